"""
Tests for host wiring: running an agent command under keep-awake.
"""

import signal
import threading
from unittest.mock import MagicMock, patch

import pytest

from caffeinate_agent.config import Config, ZulipConfig
from caffeinate_agent.core.controller import ControllerState, KeepAwakeController
from caffeinate_agent.core.events import PROCESS_SHUTTING_DOWN, WORK_ENDED, WORK_STARTED, EventBus
from caffeinate_agent.core.host import (
    EXIT_COMMAND_NOT_FOUND,
    build_controller,
    hold,
    run_agent,
)
from caffeinate_agent.core.platform import PlatformKind


def make_config(**overrides):
    values = dict(
        enabled=True,
        who="tests",
        why="testing",
        stop_timeout=0.5,
        status_key="caf",
        log_level="WARNING",
        zulip=ZulipConfig(False, None, None, None, None),
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def controller(supervisor, linux_spec):
    ctl = KeepAwakeController(supervisor=supervisor, spec=linux_spec)
    with patch.object(ctl, "install_exit_hook"):
        yield ctl
    ctl.disengage()


class FakeAgent:
    """Agent process stand-in; checks the machine is held awake while it runs."""

    def __init__(self, controller, returncode=0):
        self.controller = controller
        self.returncode = returncode
        self.active_while_running = None
        self.argv = None

    def __call__(self, argv):
        self.argv = argv
        self.active_while_running = self.controller.is_active
        agent = MagicMock()
        agent.wait.return_value = self.returncode
        agent.poll.return_value = self.returncode
        return agent


class TestRunAgent:

    def test_holds_awake_while_agent_runs(self, controller, fake_popen):
        agent = FakeAgent(controller, returncode=3)

        code = run_agent(["claude", "-p", "hi"], controller=controller, popen=agent)

        assert code == 3
        assert agent.argv == ["claude", "-p", "hi"]
        assert agent.active_while_running is True
        assert len(fake_popen.spawned) == 1
        assert fake_popen.terminate_calls == 1
        assert controller.state is ControllerState.IDLE

    def test_signal_exit_code(self, controller):
        agent = FakeAgent(controller, returncode=-signal.SIGTERM)

        assert run_agent(["agent"], controller=controller, popen=agent) == 128 + signal.SIGTERM

    def test_emits_lifecycle_signals_in_order(self, controller):
        bus = EventBus()
        seen = []
        for name in (WORK_STARTED, WORK_ENDED, PROCESS_SHUTTING_DOWN):
            bus.on(name, lambda name=name: seen.append(name))

        run_agent(["agent"], controller=controller, events=bus, popen=FakeAgent(controller))

        assert seen == [WORK_STARTED, WORK_ENDED, PROCESS_SHUTTING_DOWN]

    def test_missing_agent_binary(self, controller, fake_popen):
        popen = MagicMock(side_effect=FileNotFoundError("nope"))

        code = run_agent(["nope"], controller=controller, popen=popen)

        assert code == EXIT_COMMAND_NOT_FOUND
        assert fake_popen.live_count == 0
        assert controller.state is ControllerState.IDLE

    def test_empty_command(self, controller):
        with pytest.raises(ValueError):
            run_agent([], controller=controller)

    def test_restores_signal_handlers(self, controller):
        before = signal.getsignal(signal.SIGTERM)

        run_agent(["agent"], controller=controller, popen=FakeAgent(controller))

        assert signal.getsignal(signal.SIGTERM) == before

    def test_installs_exit_hook(self, supervisor, linux_spec):
        ctl = KeepAwakeController(supervisor=supervisor, spec=linux_spec)
        with patch("caffeinate_agent.core.controller.atexit.register") as register:
            run_agent(["agent"], controller=ctl, popen=FakeAgent(ctl))

        register.assert_called_once()


class SignallingAgent:
    """Agent stand-in whose wait() delivers a signal to the host mid-run."""

    def __init__(self, controller, sig, returncode=0):
        self.controller = controller
        self.sig = sig
        self.returncode = returncode
        self.active_after_signal = None
        self.agent = None

    def __call__(self, argv):
        agent = MagicMock()
        agent.poll.return_value = None

        def wait():
            signal.raise_signal(self.sig)
            self.active_after_signal = self.controller.is_active
            return self.returncode

        agent.wait.side_effect = wait
        self.agent = agent
        return agent


main_thread_only = pytest.mark.skipif(
    threading.current_thread() is not threading.main_thread() or not hasattr(signal, "raise_signal"),
    reason="signal handlers can only be installed from the main thread",
)


def recording_bus():
    bus = EventBus()
    seen = []
    for name in (WORK_STARTED, WORK_ENDED, PROCESS_SHUTTING_DOWN):
        bus.on(name, lambda name=name: seen.append(name))
    return bus, seen


@main_thread_only
class TestRunAgentSignals:

    def test_ctrl_c_keeps_system_awake(self, controller, fake_popen):
        bus, seen = recording_bus()
        agent = SignallingAgent(controller, signal.SIGINT)

        code = run_agent(["agent"], controller=controller, events=bus, popen=agent)

        assert code == 0
        assert agent.active_after_signal is True
        agent.agent.send_signal.assert_not_called()
        # only the agent's own exit ends the work
        assert seen == [WORK_STARTED, WORK_ENDED, PROCESS_SHUTTING_DOWN]
        assert fake_popen.terminate_calls == 1
        assert controller.state is ControllerState.IDLE

    def test_sigterm_shuts_down_and_is_forwarded(self, controller, fake_popen):
        bus, seen = recording_bus()
        agent = SignallingAgent(controller, signal.SIGTERM, returncode=-signal.SIGTERM)

        code = run_agent(["agent"], controller=controller, events=bus, popen=agent)

        assert code == 128 + signal.SIGTERM
        assert agent.active_after_signal is False
        agent.agent.send_signal.assert_called_once_with(signal.SIGTERM)
        assert seen == [WORK_STARTED, PROCESS_SHUTTING_DOWN, WORK_ENDED, PROCESS_SHUTTING_DOWN]
        assert fake_popen.terminate_calls == 1

    def test_sigterm_after_agent_exit_is_not_forwarded(self, controller):
        agent = SignallingAgent(controller, signal.SIGTERM)

        def popen(argv):
            process = agent(argv)
            process.poll.return_value = 0
            return process

        run_agent(["agent"], controller=controller, popen=popen)

        agent.agent.send_signal.assert_not_called()

    def test_keyboard_interrupt_keeps_waiting(self, controller):
        bus, seen = recording_bus()
        active_on_retry = []
        agent = MagicMock()

        def wait():
            if agent.wait.call_count == 1:
                raise KeyboardInterrupt
            active_on_retry.append(controller.is_active)
            return 5

        agent.wait.side_effect = wait

        code = run_agent(["agent"], controller=controller, events=bus, popen=lambda argv: agent)

        assert code == 5
        assert agent.wait.call_count == 2
        assert active_on_retry == [True]
        agent.send_signal.assert_not_called()
        assert seen == [WORK_STARTED, WORK_ENDED, PROCESS_SHUTTING_DOWN]

    def test_restores_sigint_handler(self, controller):
        before = signal.getsignal(signal.SIGINT)

        run_agent(["agent"], controller=controller, popen=SignallingAgent(controller, signal.SIGINT))

        assert signal.getsignal(signal.SIGINT) == before


class TestHold:

    def test_engages_until_stopped(self, controller, fake_popen):
        stop = threading.Event()
        stop.set()

        assert hold(controller, stop_event=stop) is True
        assert len(fake_popen.spawned) == 1
        assert fake_popen.live_count == 0

    def test_reports_unprotected(self, controller, fake_popen):
        fake_popen.error = FileNotFoundError("systemd-inhibit")
        stop = threading.Event()
        stop.set()

        assert hold(controller, stop_event=stop) is False


class TestBuildController:

    def test_uses_config(self):
        ctl = build_controller(make_config(who="me", why="because", stop_timeout=1.5), system="Linux")

        assert ctl.spec.kind is PlatformKind.LINUX
        assert "--who=me" in ctl.spec.args
        assert "--why=because" in ctl.spec.args
        assert ctl.supervisor.stop_timeout == 1.5
        assert ctl.status_key == "caf"

    def test_disabled_is_noop(self):
        ctl = build_controller(make_config(enabled=False), system="Linux")

        assert not ctl.supported

    def test_unsupported_system(self):
        ctl = build_controller(make_config(), system="Plan9")

        assert not ctl.supported
