"""
Rendering of the configuration files defensys owns outright.

Files such as the sysctl hardening snippet or the fail2ban SSH jail are
generated whole from Jinja2 templates shipped in ``defensys/templates`` and
then written through the mutation engine as a single REPLACE_WHOLE_BLOCK
directive.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, TemplateError as Jinja2Error

from defensys.exceptions import TemplateError


class TemplateRenderer:
    """
    Render managed configuration files from templates.

    Supported templates:
        - sysctl-network: /etc/sysctl.d network hardening snippet
        - logrotate-secure: logrotate stanza for the auth log
        - fail2ban-sshd: fail2ban jail override for sshd
        - pwquality: /etc/security/pwquality.conf

    Example:
        >>> renderer = TemplateRenderer()
        >>> renderer.render("fail2ban-sshd", port=22, max_retry=3, ...)
    """

    TEMPLATE_FILES = {
        "sysctl-network": "sysctl-network.conf.j2",
        "logrotate-secure": "logrotate-secure.j2",
        "fail2ban-sshd": "fail2ban-sshd.local.j2",
        "pwquality": "pwquality.conf.j2",
    }

    def __init__(self, template_dir: Optional[str] = None):
        """
        Args:
            template_dir: Directory containing templates (defaults to package templates)
        """
        if template_dir is None:
            template_dir = str(Path(__file__).parent / "templates")
        self.template_dir = Path(template_dir)

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

    def render(self, name: str, **params: Any) -> str:
        """
        Render template ``name``.

        Raises:
            TemplateError: If the template is unknown, missing or fails to render
        """
        if name not in self.TEMPLATE_FILES:
            raise TemplateError(
                f"Unsupported template: {name}. "
                f"Supported templates: {', '.join(self.TEMPLATE_FILES)}"
            )
        template_file = self.TEMPLATE_FILES[name]
        try:
            template = self.env.get_template(template_file)
            return template.render(**params)
        except TemplateNotFound:
            raise TemplateError(f"Template not found: {template_file} in {self.template_dir}")
        except Jinja2Error as e:
            raise TemplateError(f"Failed to render template {template_file}: {e}")

    def list_templates(self) -> List[str]:
        return list(self.TEMPLATE_FILES.keys())


_default_renderer: Optional[TemplateRenderer] = None


def render(name: str, **params: Any) -> str:
    """Render with the package's shared renderer."""
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = TemplateRenderer()
    return _default_renderer.render(name, **params)


def template_context(settings_section: Any) -> Dict[str, Any]:
    """Dataclass settings section as template parameters."""
    return dict(vars(settings_section))
