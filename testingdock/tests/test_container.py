"""
Tests for Container start, reset and close
"""

import asyncio
import logging
import threading
import time

import pytest

from ..container import Container, ContainerOpts, NodeState
from ..exceptions import (
    DockError,
    EngineCallError,
    HealthCheckTimeoutError,
    MissingAttachmentError,
    OwnershipViolationError,
    ResetError,
    TopologyError,
)
from ..network import Network, NetworkOpts
from ..ownership import OWNER_LABEL, OWNER_VALUE
from ..reset import reset_custom
from ..teardown import Lifecycle


def make_network(docker, config, name="testnet"):
    return Network(docker, NetworkOpts(name=name), config)


def make_container(docker, run_config, name, **kwargs):
    kwargs.setdefault("image", "busybox:latest")
    return Container(docker, ContainerOpts(name=name, **kwargs), run_config)


class ClosableStream:
    def __init__(self):
        self.closed = False

    def __iter__(self):
        return iter([])

    def close(self):
        self.closed = True


class TestContainerOpts:
    """Tests for ContainerOpts validation"""

    def test_name_required(self):
        """Test container name validation"""
        with pytest.raises(ValueError):
            ContainerOpts(name="", image="busybox")

    def test_image_required(self):
        """Test container image validation"""
        with pytest.raises(ValueError):
            ContainerOpts(name="web", image="")

    def test_defaults_from_config(self, docker, config):
        """Test defaults taken from the run configuration"""
        c = make_container(docker, config, "web")
        assert c.health_check_timeout == config.default_health_check_timeout
        assert c.verbose is False
        assert c.state == NodeState.UNCONFIGURED
        assert c.lifecycle == Lifecycle.ACTIVE

    def test_reserved_options_are_dropped(self, docker, config):
        """Test reserved create options are dropped"""
        c = make_container(
            docker, config, "web",
            config={"command": ["sleep", "60"], "name": "other"},
            host_config={"ports": {"80/tcp": 8080}, "auto_remove": False, "network_mode": "host"},
            labels={"team": "qa"}
        )
        assert c.options == {"command": ["sleep", "60"], "ports": {"80/tcp": 8080}}
        assert c.labels == {"team": "qa", OWNER_LABEL: OWNER_VALUE}

    @pytest.mark.asyncio
    async def test_reserved_options_not_passed_to_engine(self, docker, config):
        """Test reserved create options never reach the engine"""
        net = make_network(docker, config)
        net.after(make_container(
            docker, config, "web",
            host_config={"auto_remove": False, "detach": False, "mem_limit": "64m"}
        ))

        await net.start()

        assert docker.create_options["web"] == {"mem_limit": "64m"}


class TestDependencyEdges:
    """Tests for after() validation"""

    def test_child_inherits_network(self, docker, config):
        """Test child joins the parent's network"""
        net = make_network(docker, config)
        a = make_container(docker, config, "a")
        b = make_container(docker, config, "b")

        net.after(a)
        a.after(b)

        assert b.network is net
        assert b.parent is a
        assert a.children == [b]

    def test_network_propagates_to_subtree_attached_first(self, docker, config):
        """Test network propagation to a prebuilt subtree"""
        net = make_network(docker, config)
        a = make_container(docker, config, "a")
        b = make_container(docker, config, "b")
        c = make_container(docker, config, "c")

        a.after(b).after(c)
        assert c.network is None

        net.after(a)
        assert b.network is net
        assert c.network is net

    def test_self_attachment_rejected(self, docker, config):
        """Test self attachment"""
        a = make_container(docker, config, "a")
        with pytest.raises(TopologyError):
            a.after(a)

    def test_duplicate_attachment_rejected(self, docker, config):
        """Test attaching a container twice"""
        net = make_network(docker, config)
        a = make_container(docker, config, "a")
        b = make_container(docker, config, "b")
        net.after(a)
        net.after(b)

        with pytest.raises(TopologyError):
            a.after(b)
        with pytest.raises(TopologyError):
            net.after(a)

    def test_cycle_rejected(self, docker, config):
        """Test dependency cycles"""
        a = make_container(docker, config, "a")
        b = make_container(docker, config, "b")
        c = make_container(docker, config, "c")
        a.after(b)
        b.after(c)

        with pytest.raises(TopologyError):
            c.after(a)
        assert a.parent is None

    @pytest.mark.asyncio
    async def test_edge_after_start_rejected(self, docker, config):
        """Test edges added after start"""
        net = make_network(docker, config)
        a = make_container(docker, config, "a")
        net.after(a)
        await net.start()

        with pytest.raises(TopologyError):
            a.after(make_container(docker, config, "late"))
        with pytest.raises(TopologyError):
            net.after(make_container(docker, config, "late-root"))


class TestContainerStart:
    """Tests for the start protocol"""

    @pytest.mark.asyncio
    async def test_start_without_network(self, docker, config):
        """Test starting a detached container"""
        c = make_container(docker, config, "orphan")
        with pytest.raises(MissingAttachmentError):
            await c.start()
        assert docker.calls == []

    @pytest.mark.asyncio
    async def test_start_sequence(self, docker, config):
        """Test engine call order on start"""
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web"))

        await net.start()

        ops = [op for op, name in docker.calls if name in ("web", "busybox:latest")]
        assert ops == [
            "image_exists",
            "list_containers",
            "create_container",
            "start_container",
            "inspect_container",
        ]
        assert c.state == NodeState.HEALTHY
        assert c.id in docker.containers
        assert docker.containers[c.id].labels[OWNER_LABEL] == OWNER_VALUE

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, docker, config):
        """Test starting a running container again is rejected"""
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web"))
        c.after(make_container(docker, config, "child"))
        await net.start()
        calls = len(docker.calls)

        with pytest.raises(DockError, match="already started"):
            await c.start()

        assert len(docker.calls) == calls
        assert c.id in docker.containers
        assert c.state == NodeState.HEALTHY

    @pytest.mark.asyncio
    async def test_missing_image_is_pulled_before_create(self, docker, config):
        """Test missing image pull"""
        net = make_network(docker, config)
        net.after(make_container(docker, config, "db", image="postgres:16"))

        await net.start()

        ops = [op for op, _ in docker.operations("image_exists", "pull_image", "create_container")]
        assert ops == ["image_exists", "pull_image", "create_container"]

    @pytest.mark.asyncio
    async def test_present_image_not_pulled(self, docker, config):
        """Test present image is not pulled"""
        net = make_network(docker, config)
        net.after(make_container(docker, config, "web"))
        await net.start()
        assert docker.operations("pull_image") == []

    @pytest.mark.asyncio
    async def test_force_pull(self, docker, config):
        """Test forced image pull"""
        net = make_network(docker, config)
        net.after(make_container(docker, config, "web", force_pull=True))
        await net.start()
        assert docker.operations("pull_image") == [("pull_image", "busybox:latest")]

    @pytest.mark.asyncio
    async def test_stale_owned_container_removed(self, docker, config):
        """Test stale container cleanup"""
        stale = docker.add_container("web", labels={OWNER_LABEL: OWNER_VALUE})
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web"))

        await net.start()

        assert stale.id not in docker.containers
        assert c.id in docker.containers
        removed = docker.calls.index(("remove_container", "web"))
        created = docker.calls.index(("create_container", "web"))
        assert removed < created

    @pytest.mark.asyncio
    async def test_foreign_container_aborts_start(self, docker, config):
        """Test foreign container name collision"""
        foreign = docker.add_container("web", labels={"owner": "someone-else"})
        net = make_network(docker, config)
        net.after(make_container(docker, config, "web"))

        with pytest.raises(OwnershipViolationError):
            await net.start()

        assert foreign.id in docker.containers
        assert docker.operations("create_container", "remove_container") == []

    @pytest.mark.asyncio
    async def test_engine_failure_is_fatal(self, docker, config):
        """Test engine failure stops the subtree"""
        docker.fail("create_container", "web")
        net = make_network(docker, config)
        web = net.after(make_container(docker, config, "web"))
        web.after(make_container(docker, config, "child"))

        with pytest.raises(EngineCallError):
            await net.start()
        assert ("create_container", "child") not in docker.calls

    @pytest.mark.asyncio
    async def test_children_start_after_parent_healthy(self, docker, config):
        """Test children wait for a healthy parent"""
        net = make_network(docker, config)
        parent = net.after(make_container(docker, config, "parent"))
        parent.after(make_container(docker, config, "child"))

        await net.start()

        parent_healthy = docker.calls.index(("inspect_container", "parent"))
        child_created = docker.calls.index(("create_container", "child"))
        assert parent_healthy < child_created

    @pytest.mark.asyncio
    async def test_flaky_health_check(self, docker, config):
        """Test health check retries"""
        attempts = []

        def flaky():
            attempts.append(time.monotonic())
            if len(attempts) < 3:
                raise ConnectionError("connection refused")
            return True

        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "db", health_check=flaky))

        await net.start()

        assert len(attempts) == 3
        assert c.state == NodeState.HEALTHY

    @pytest.mark.asyncio
    async def test_health_check_timeout(self, docker, config):
        """Test health check timeout"""
        net = make_network(docker, config)
        c = net.after(make_container(
            docker, config, "never",
            health_check=lambda: False,
            health_check_timeout=0.2
        ))
        child = c.after(make_container(docker, config, "child"))

        started = time.monotonic()
        with pytest.raises(HealthCheckTimeoutError) as exc_info:
            await net.start()
        elapsed = time.monotonic() - started

        assert elapsed >= 0.19
        assert exc_info.value.name == "never"
        assert exc_info.value.container_id == c.id
        assert child.state == NodeState.UNCONFIGURED

    @pytest.mark.asyncio
    async def test_default_health_check_requires_running(self, docker, config):
        """Test default health check"""
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web", health_check_timeout=0.1))

        original_start = docker.start_container
        docker.start_container = lambda container_id: None  # status stays "created"

        with pytest.raises(HealthCheckTimeoutError) as exc_info:
            await net.start()
        assert "created" in exc_info.value.last_error

        docker.start_container = original_start
        assert c.state == NodeState.RUNNING

    @pytest.mark.asyncio
    async def test_verbose_follows_logs(self, docker, config, caplog):
        """Test container log following"""
        caplog.set_level(logging.INFO, logger="Container")
        docker.logs["web"] = [b"hello\nwor", b"ld\n", b"\n"]
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web", verbose=True))

        await net.start()
        await asyncio.wait_for(c._log_task, timeout=1)

        lines = [r.getMessage() for r in caplog.records if "(clogs )" in r.getMessage()]
        assert len(lines) == 2
        assert lines[0].endswith("- hello")
        assert lines[1].endswith("- world")


class TestContainerReset:
    """Tests for the reset protocol"""

    @pytest.mark.asyncio
    async def test_default_reset_restarts(self, docker, config):
        """Test default reset action"""
        net = make_network(docker, config)
        net.after(make_container(docker, config, "web"))
        await net.start()

        await net.reset()

        assert docker.operations("restart_container") == [("restart_container", "web")]

    @pytest.mark.asyncio
    async def test_chain_resets_in_order(self, docker, config):
        """Test reset order along a chain"""
        events = []

        def recorder(label):
            return lambda: events.append(label)

        net = make_network(docker, config)
        a = net.after(make_container(
            docker, config, "a",
            reset=reset_custom(recorder("a-reset")),
            health_check=recorder("a-health")
        ))
        a.after(make_container(
            docker, config, "b",
            reset=reset_custom(recorder("b-reset")),
            health_check=recorder("b-health")
        ))
        await net.start()
        events.clear()

        await net.reset()

        assert events == ["a-reset", "a-health", "b-reset", "b-health"]

    @pytest.mark.asyncio
    async def test_reset_failure_halts_children(self, docker, config):
        """Test reset failure"""
        child_resets = []

        def failing():
            raise RuntimeError("cannot drop schema")

        net = make_network(docker, config)
        a = net.after(make_container(docker, config, "a", reset=reset_custom(failing)))
        a.after(make_container(
            docker, config, "b",
            reset=reset_custom(lambda: child_resets.append(1))
        ))
        await net.start()

        with pytest.raises(ResetError) as exc_info:
            await net.reset()

        assert "cannot drop schema" in str(exc_info.value)
        assert child_resets == []

    @pytest.mark.asyncio
    async def test_reset_before_start(self, docker, config):
        """Test reset of an unstarted container"""
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web"))
        with pytest.raises(DockError):
            await c.reset()
        assert docker.calls == []


class TestContainerClose:
    """Tests for the teardown protocol"""

    @pytest.mark.asyncio
    async def test_children_removed_first(self, docker, config):
        """Test teardown order"""
        net = make_network(docker, config)
        a = net.after(make_container(docker, config, "a"))
        b = a.after(make_container(docker, config, "b"))
        b.after(make_container(docker, config, "c"))
        await net.start()

        await net.close()

        removals = [name for _, name in docker.operations("remove_container")]
        assert removals == ["c", "b", "a"]
        assert docker.calls[-1][0] == "remove_network"
        assert docker.containers == {}
        assert docker.networks == {}

    @pytest.mark.asyncio
    async def test_disconnect_before_remove(self, docker, config):
        """Test disconnect before removal"""
        net = make_network(docker, config)
        net.after(make_container(docker, config, "web"))
        await net.start()

        await net.close()

        assert docker.operations("disconnect_container", "remove_container") == [
            ("disconnect_container", "web"),
            ("remove_container", "web"),
        ]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, docker, config):
        """Test repeated close"""
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web"))
        await net.start()

        await c.close()
        calls = len(docker.calls)
        await c.close()

        assert len(docker.calls) == calls
        assert c.lifecycle == Lifecycle.CLOSED
        assert c.state == NodeState.CLOSED

    @pytest.mark.asyncio
    async def test_auto_removed_container(self, docker, config):
        """Test close of an auto-removed container"""
        net = make_network(docker, config)
        c = net.after(make_container(docker, config, "web"))
        await net.start()
        del docker.containers[c.id]

        await net.close()

        assert c.lifecycle == Lifecycle.CLOSED
        assert docker.networks == {}

    @pytest.mark.asyncio
    async def test_failed_close_can_be_retried(self, docker, config):
        """Test a close that failed leaves the tree closable"""
        net = make_network(docker, config)
        parent = net.after(make_container(docker, config, "parent"))
        child = parent.after(make_container(docker, config, "child"))
        await net.start()
        docker.fail("remove_container", "parent")

        with pytest.raises(EngineCallError):
            await net.close()

        assert child.lifecycle == Lifecycle.CLOSED
        assert parent.lifecycle == Lifecycle.ACTIVE
        assert net.lifecycle == Lifecycle.ACTIVE
        assert len(docker.networks) == 1

        docker.failures.clear()
        await net.close()

        assert [name for _, name in docker.operations("remove_container")] == ["child", "parent", "parent"]
        assert docker.containers == {}
        assert docker.networks == {}
        assert net.lifecycle == Lifecycle.CLOSED

    @pytest.mark.asyncio
    async def test_log_stream_opened_during_close_is_closed(self, docker, config):
        """Test a log stream that opens after close is closed right away"""
        gate = threading.Event()
        stream = ClosableStream()

        def slow_stream(container_id):
            gate.wait(timeout=1)
            return stream

        docker.stream_container_logs = slow_stream
        net = make_network(docker, config)
        net.after(make_container(docker, config, "web", verbose=True))
        await net.start()
        await asyncio.sleep(0.05)

        await net.close()
        gate.set()
        for _ in range(100):
            if stream.closed:
                break
            await asyncio.sleep(0.01)

        assert stream.closed

    @pytest.mark.asyncio
    async def test_close_unstarted(self, docker, config):
        """Test close of an unstarted container"""
        c = make_container(docker, config, "web")
        await c.close()
        assert docker.calls == []
        assert c.lifecycle == Lifecycle.CLOSED
