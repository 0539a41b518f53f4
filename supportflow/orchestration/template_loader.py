"""Jinja2 template loader for model prompts."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

PROMPTS_DIR = Path(__file__).parent / "prompts"


class TemplateLoader:
    """Loads and renders the Jinja2 prompt templates of the pipeline stages."""

    def __init__(self, templates_dir: Path = PROMPTS_DIR):
        self.templates_dir = templates_dir
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, template_name: str, **context) -> str:
        """Render a template with context variables.

        Raises:
            jinja2.TemplateNotFound: If template doesn't exist
        """
        template = self.env.get_template(template_name)
        return template.render(**context)


_default_loader: TemplateLoader | None = None


def get_template_loader() -> TemplateLoader:
    """Shared loader for the bundled prompts directory."""
    global _default_loader
    if _default_loader is None:
        _default_loader = TemplateLoader()
    return _default_loader
