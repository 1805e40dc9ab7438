from jinja2 import Environment, BaseLoader, StrictUndefined, Template, TemplateError, meta
from typing import Dict, Any, List, Optional
import logging

logger = logging.getLogger("automation_engine")


def build_context(snapshot: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Template context for a contact: snapshot fields at top level
    ({{ first_name }}) and under `contact` ({{ contact.first_name }}).
    """
    context = dict(snapshot or {})
    context["contact"] = dict(snapshot or {})
    if extra:
        context.update(extra)
    return context


class TemplateRenderer:
    def __init__(self):
        # StrictUndefined raises an error if a variable is missing
        self.env = Environment(loader=BaseLoader(), undefined=StrictUndefined)
        self._template_cache: Dict[str, Template] = {}

    def _get_template(self, template_str: str) -> Template:
        if template_str not in self._template_cache:
            self._template_cache[template_str] = self.env.from_string(template_str)
        return self._template_cache[template_str]

    def missing_variables(self, template_str: str, context: Dict[str, Any]) -> List[str]:
        """
        Top-level variables the template references that `context` lacks.
        A template that does not parse is reported as a single entry.
        """
        try:
            ast = self.env.parse(template_str)
        except TemplateError as e:
            return [f"Template Syntax Error: {e}"]
        required_vars = meta.find_undeclared_variables(ast)
        return sorted(var for var in required_vars if var not in context)

    def render(self, template_str: Optional[str], context: Dict[str, Any]) -> str:
        if not template_str:
            return ""
        try:
            template = self._get_template(template_str)
            return template.render(**context)
        except TemplateError as e:
            logger.error(f"Error rendering template: {e}")
            raise ValueError(f"Template rendering failed: {e}")
