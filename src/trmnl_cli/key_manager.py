from typing import Callable, List

from prompt_toolkit import PromptSession
from prompt_toolkit.application.current import get_app
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.lexers import PygmentsLexer
from pygments.lexers.html import HtmlLexer

from trmnl_cli.display import console


# ========== Key bindings ==========
class KeyBindingManager:
    SUBMIT_KEYS = {
        "Ctrl+J": ("c-j",),
        "Esc+Enter": ("escape", "enter"),
    }

    def __init__(self, accept_callback: Callable[[], None], clear_callback: Callable[[], None]):
        self.bindings = KeyBindings()
        self.submit_labels: List[str] = []

        for label, keys in self.SUBMIT_KEYS.items():
            self.bindings.add(*keys)(lambda event: accept_callback())
            self.submit_labels.append(label)

        self.bindings.add("c-c")(lambda event: clear_callback())


class SessionFactory:
    @staticmethod
    def build_session(bindings: KeyBindings) -> PromptSession:
        return PromptSession(
            multiline=True,
            lexer=PygmentsLexer(HtmlLexer),
            key_bindings=bindings,
        )

    @staticmethod
    def make_prompt_fragments(label: str = "content"):
        return [("class:prompt", f"{label}> ")]


# ========== Compose ==========
def compose_content(label: str = "content") -> str:
    """Read multi-line HTML/JSON from an interactive editor; empty on cancel or exit."""

    def accept():
        app = get_app()
        app.exit(result=app.current_buffer.text)

    def clear():
        raise KeyboardInterrupt()

    kbm = KeyBindingManager(accept_callback=accept, clear_callback=clear)
    session = SessionFactory.build_session(kbm.bindings)

    submit_hint = ", ".join(kbm.submit_labels)
    console.print(f"[info]Compose payload[/info] (submit: {submit_hint}, cancel: Ctrl+C, exit: Ctrl+D)")

    try:
        text = session.prompt(SessionFactory.make_prompt_fragments(label))
    except KeyboardInterrupt:
        console.print("[warn]Input cancelled.[/warn]")
        return ""
    except EOFError:
        return ""
    return text.strip()
