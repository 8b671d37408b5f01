"""
Caffeinate Agent - 程序入口模块

本模块是 Python 包的主入口点，当使用 `python -m caffeinate_agent` 运行时执行。

使用方式:
    python -m caffeinate_agent run -- claude -p "任务描述"
    python -m caffeinate_agent hold
    python -m caffeinate_agent check
"""

import sys

from caffeinate_agent.cli import main


if __name__ == "__main__":
    # 执行 CLI 主函数并返回退出码
    sys.exit(main())
