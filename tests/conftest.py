"""
tests/conftest.py — 共享 fixture: 模拟 actor 运行时与进程级状态重置
"""
from collections import deque

import pytest

from actor_metrics import agent
from actor_metrics import registry as registry_module
from actor_metrics.backend import InMemoryBackend
from actor_metrics.runtime import RuntimeBinding, apply_rules


class PlaceOrder:
    def __init__(self, order_id=0):
        self.order_id = order_id


class CancelOrder:
    pass


class Boom:
    """处理时抛出异常的消息"""


class OrderActor:
    def receive(self, message):
        if isinstance(message, Boom):
            raise ValueError("boom")


class Envelope:
    def __init__(self, message):
        self.message = message


def make_cell_class():
    """每个测试一个新的 ActorCell 类，拦截互不影响"""

    class ActorCell:
        def __init__(self, path, actor_cls=OrderActor):
            self.path = path
            self.actor = None
            self._actor_cls = actor_cls
            self.mailbox = deque()
            self.received = []

        def new_actor(self):
            self.actor = self._actor_cls()
            return self.actor

        def terminate(self):
            self.actor = None

        def send_message(self, envelope):
            self.mailbox.append(envelope)

        def invoke(self, envelope):
            self.received.append(envelope.message)
            self.actor.receive(envelope.message)

        def tell(self, message):
            self.send_message(Envelope(message))

        def process_all(self):
            while self.mailbox:
                self.invoke(self.mailbox.popleft())

    return ActorCell


@pytest.fixture(autouse=True)
def reset_metrics_state():
    """每个测试结束后清空活动注册表、撤销拦截、重置 Agent"""
    yield
    registry_module._active = None
    for handle in reversed(agent._handles):
        handle.remove()
    agent._handles.clear()
    agent._report = None


@pytest.fixture
def cell_class():
    return make_cell_class()


@pytest.fixture
def binding(cell_class):
    return RuntimeBinding(cell_class=cell_class)


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def attach(binding):
    """把模块的拦截规则挂到测试用 ActorCell 上（测试结束后撤销）"""
    handles = []

    def _attach(*modules):
        rules = []
        for module in modules:
            rules.extend(module.interception_rules(binding))
        handles.extend(apply_rules(rules))
        return modules

    yield _attach
    for handle in reversed(handles):
        handle.remove()
