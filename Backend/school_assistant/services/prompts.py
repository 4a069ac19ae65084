import os

from jinja2 import Environment, FileSystemLoader

# ─── Jinja2 Template Environment ─────────────────────────────────────────────
TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "prompts")
_jinja_env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), trim_blocks=True, lstrip_blocks=True)


def render_prompt(name: str, **context) -> str:
    return _jinja_env.get_template(name).render(**context).strip()
