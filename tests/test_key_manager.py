import pytest

from trmnl_cli import key_manager
from trmnl_cli.key_manager import KeyBindingManager, SessionFactory, compose_content


def test_submit_and_cancel_keys_are_bound():
    kbm = KeyBindingManager(accept_callback=lambda: None, clear_callback=lambda: None)
    assert kbm.submit_labels == ["Ctrl+J", "Esc+Enter"]
    assert len(kbm.bindings.bindings) == 3


def test_prompt_fragments():
    assert SessionFactory.make_prompt_fragments("html") == [("class:prompt", "html> ")]


class FakeSession:
    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc

    def prompt(self, fragments):
        if self.exc:
            raise self.exc
        return self.result


@pytest.mark.parametrize("session, expected", [
    (FakeSession(result='  <div class="layout">hi</div>\n'), '<div class="layout">hi</div>'),
    (FakeSession(exc=KeyboardInterrupt()), ""),
    (FakeSession(exc=EOFError()), ""),
])
def test_compose_content(monkeypatch, session, expected):
    monkeypatch.setattr(key_manager.SessionFactory, "build_session", staticmethod(lambda bindings: session))
    assert compose_content() == expected
