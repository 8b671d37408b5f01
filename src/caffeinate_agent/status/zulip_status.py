"""
Caffeinate Agent - Zulip 状态推送模块

将保活状态变化以消息形式推送到 Zulip 流，便于远程观察机器是否处于保活中。

重要特性:
    1. 单向通信: 仅向 Zulip 发送消息，从不读取
    2. 异步发送: set_status() 只入队，网络请求在后台线程中完成，
       慢速或不可达的服务器不会阻塞保活状态机
    3. 异常安全: 所有错误被捕获，不影响保活状态机
    4. 使用 Basic Auth: 通过 email:api_key 进行认证

Zulip API 端点:
    POST /api/v1/messages

环境变量配置:
    ZULIP_ENABLED=true
    ZULIP_SITE=https://your-org.zulipchat.com
    ZULIP_EMAIL=caffeinate-bot@your-org.zulipchat.com
    ZULIP_API_KEY=your_api_key
    ZULIP_STREAM=caffeinate
"""

import base64
import json
import logging
import queue
import socket
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional

from caffeinate_agent.status.base import StatusSurface

logger = logging.getLogger(__name__)

IDLE_TEXT = "💤 idle sleep allowed"


class ZulipStatus(StatusSurface):
    """
    Zulip 状态显示面

    每次状态变化发送一条消息，主题为 "{key}@{hostname}"。
    消息按顺序由一个守护线程发送，首次 set_status() 时启动。

    Attributes:
        site: Zulip 服务器 URL
        email: 机器人邮箱地址
        api_key: Zulip API 密钥
        stream: 目标流名称
        hostname: 消息主题中使用的主机名
    """

    def __init__(
        self,
        site: str,
        email: str,
        api_key: str,
        stream: str,
        hostname: Optional[str] = None,
    ):
        self.site = site.rstrip("/")
        self.email = email
        self.api_key = api_key
        self.stream = stream
        self.hostname = hostname or socket.gethostname()
        # 预先生成认证头
        self._auth_header = self._make_auth_header()

        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()

    def _make_auth_header(self) -> str:
        """创建 HTTP Basic 认证头: Basic base64(email:api_key)"""
        credentials = f"{self.email}:{self.api_key}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return f"Basic {encoded}"

    def set_status(self, key: str, text: Optional[str]) -> None:
        """
        推送状态变化（只入队，立即返回）

        Args:
            key: 状态项标识
            text: 显示文本，None 表示清除
        """
        content = text if text is not None else IDLE_TEXT
        try:
            self._ensure_worker()
            self._queue.put((f"{key}@{self.hostname}", content))
        except Exception as e:
            # 记录错误但不抛出，确保不影响保活状态
            logger.warning("[ZulipStatus] Failed to queue message: %s", e)

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run,
                name="zulip-status",
                daemon=True,
            )
            self._worker.start()

    def _run(self) -> None:
        """后台线程：逐条发送队列中的消息，None 表示退出"""
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                topic, content = item
                self._send_message(topic, content)
            except Exception as e:
                logger.warning("[ZulipStatus] Failed to send message: %s", e)
            finally:
                self._queue.task_done()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        等待已入队的消息发送完毕

        Args:
            timeout: 最长等待秒数，None 表示一直等待

        Returns:
            bool: 队列是否已清空
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """发送剩余消息后停止后台线程"""
        with self._worker_lock:
            worker = self._worker
            self._worker = None
        if worker is None:
            return
        self._queue.put(None)
        worker.join(timeout)
        if worker.is_alive():
            logger.warning("[ZulipStatus] Gave up waiting for pending messages")

    def _send_message(self, topic: str, content: str) -> None:
        """
        内部方法：通过 Zulip API 发送消息

        Raises:
            Exception: HTTP / 网络错误以外的异常，由后台线程捕获
        """
        url = f"{self.site}/api/v1/messages"

        data = {
            "type": "stream",
            "to": self.stream,
            "topic": topic,
            "content": content,
        }
        encoded_data = urllib.parse.urlencode(data).encode("utf-8")

        request = urllib.request.Request(
            url,
            data=encoded_data,
            method="POST",
            headers={
                "Authorization": self._auth_header,
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )

        try:
            with urllib.request.urlopen(request, timeout=10) as response:
                result = json.loads(response.read().decode())
                if result.get("result") != "success":
                    logger.warning("[ZulipStatus] API error: %s", result.get("msg", "Unknown error"))
        except urllib.error.HTTPError as e:
            logger.warning("[ZulipStatus] HTTP error %s: %s", e.code, e.reason)
        except urllib.error.URLError as e:
            logger.warning("[ZulipStatus] Network error: %s", e.reason)
        except json.JSONDecodeError:
            logger.warning("[ZulipStatus] Invalid JSON response from Zulip")
