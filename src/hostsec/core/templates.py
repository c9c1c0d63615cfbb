"""Jinja2 rendering of managed configuration fragments."""

from typing import Any

from jinja2 import Environment, PackageLoader, select_autoescape


# Templates ship inside the package under hostsec/templates
jinja_env = Environment(
    loader=PackageLoader("hostsec", "templates"),
    autoescape=select_autoescape(),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def render_template(name: str, **context: Any) -> str:
    """Render a packaged template by relative name."""
    return jinja_env.get_template(name).render(**context)
