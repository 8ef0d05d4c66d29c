"""
Node lifecycle tests against a stand-in process.
"""

import os
import socket

import pytest

from minicluster import (
    ConvergenceTimeoutError, LaunchError, LifecycleError, Node, NodeState, TLSInfo,
)
from minicluster.config import build_node_configs
from minicluster.readiness import port_open

from conftest import fake_node_command


@pytest.fixture
def node_config(make_config):
    config = make_config(size=1)
    return build_node_configs(config, [TLSInfo()], [TLSInfo()])[0]


def _make_node(node_config, mode="normal", **kwargs):
    kwargs.setdefault("start_timeout", 5.0)
    kwargs.setdefault("stop_timeout", 2.0)
    return Node(node_config, fake_node_command(mode), **kwargs)


def test_start_stop_restart(node_config):
    node = _make_node(node_config)
    assert node.state == NodeState.UNSTARTED

    try:
        node.start()
        assert node.state == NodeState.RUNNING
        assert port_open(node_config.host, node_config.client_port)
        assert port_open(node_config.host, node_config.peer_port)
        first_pid = node.pid

        node.stop()
        assert node.state == NodeState.STOPPED
        assert not node.escalated
        assert not port_open(node_config.host, node_config.client_port)
        assert os.path.isdir(node_config.data_dir)

        node.restart()
        assert node.state == NodeState.RUNNING
        assert node.pid != first_pid
    finally:
        node.terminate()

    assert node.state == NodeState.TERMINATED


def test_wrong_state_transitions(node_config):
    node = _make_node(node_config)

    with pytest.raises(LifecycleError):
        node.stop()
    with pytest.raises(LifecycleError):
        node.restart()

    try:
        node.start()
        pid = node.pid
        with pytest.raises(LifecycleError):
            node.start()
        with pytest.raises(LifecycleError):
            node.restart()
        assert node.pid == pid
        assert node.state == NodeState.RUNNING
    finally:
        node.terminate()

    with pytest.raises(LifecycleError):
        node.restart()
    with pytest.raises(LifecycleError):
        node.start()


def test_stop_escalates_to_kill(node_config):
    node = _make_node(node_config, mode="ignore-term", stop_timeout=0.5)
    try:
        node.start()
        node.stop()
        assert node.escalated
        assert node.state == NodeState.STOPPED
        assert not port_open(node_config.host, node_config.client_port)
    finally:
        node.terminate()


def test_process_exit_is_a_launch_error(node_config):
    node = _make_node(node_config, mode="exit")

    with pytest.raises(LaunchError):
        node.start()
    assert node.state == NodeState.UNSTARTED


def test_start_timeout(node_config):
    node = _make_node(node_config, mode="no-listen", start_timeout=0.5)

    with pytest.raises(ConvergenceTimeoutError):
        node.start()
    assert node.state == NodeState.UNSTARTED
    node.terminate()


def test_failed_restart_stays_stopped(node_config):
    node = _make_node(node_config)
    try:
        node.start()
        node.stop()

        node.command = fake_node_command("exit")
        with pytest.raises(LaunchError):
            node.restart()
        assert node.state == NodeState.STOPPED

        node.command = fake_node_command("normal")
        node.restart()
        assert node.state == NodeState.RUNNING
    finally:
        node.terminate()


def _listener(host, port):
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((host, port))
    sock.listen(1)
    return sock


def test_restart_on_taken_ports_stays_stopped(node_config):
    node = _make_node(node_config)
    try:
        node.start()
        node.stop()

        holders = [_listener(node_config.host, node_config.client_port),
                   _listener(node_config.host, node_config.peer_port)]
        try:
            with pytest.raises(LaunchError) as excinfo:
                node.restart()
            assert "already in use" in str(excinfo.value)
            assert node.state == NodeState.STOPPED
        finally:
            for sock in holders:
                sock.close()

        node.restart()
        assert node.state == NodeState.RUNNING
    finally:
        node.terminate()


def test_missing_executable(node_config):
    node = Node(node_config, [os.path.join(node_config.data_dir, "no-such-binary")])

    with pytest.raises(LaunchError):
        node.start()
    assert node.state == NodeState.UNSTARTED


def test_terminate_is_idempotent(node_config):
    node = _make_node(node_config)
    node.start()
    node.terminate()
    node.terminate()
    assert node.state == NodeState.TERMINATED
    assert node.pid is None


def test_output_goes_to_log_file(node_config):
    node = _make_node(node_config, mode="exit")
    with pytest.raises(LaunchError) as excinfo:
        node.start()
    assert node_config.log_file in str(excinfo.value)
    assert os.path.exists(node_config.log_file)
