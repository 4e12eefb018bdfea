"""Skeleton rendering using Jinja2 templates.

Renders the repository skeleton and usage documentation for an artifact.
Output depends only on the render context: identical input, identical bytes.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import BaseLoader, Environment, FileSystemLoader, StrictUndefined, TemplateError

from portal_forge.errors import TemplateRenderingError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

NODE_RUNTIMES = ("nodejs", "typescript", "javascript")

FRONTEND_TYPES = ("frontend-app",)
DOCS_TYPES = ("documentation",)
GITOPS_TYPES = ("gitops-app", "deployment-pipeline", "environment-config", "catalog-registration")
LIBRARY_TYPES = ("library",)

FilePlan = List[Tuple[str, str]]  # (output path, template name)


def component_kind(artifact_type: str) -> str:
    """Catalog component type for an artifact type."""
    if artifact_type in FRONTEND_TYPES:
        return "website"
    if artifact_type in DOCS_TYPES:
        return "documentation"
    if artifact_type in LIBRARY_TYPES:
        return "library"
    if artifact_type in GITOPS_TYPES:
        return "resource"
    return "service"


def plan_files(artifact_type: str, phase_rank: int, runtime: str) -> FilePlan:
    """
    Files to render, in declaration order.

    Phase files are cumulative: each phase adds to what the phase below
    already requires, mirroring the cumulative validation rules.
    """
    plan: FilePlan = [
        ("README.md", "base/README.md.j2"),
        ("catalog-info.yaml", "base/catalog-info.yaml.j2"),
        (".gitignore", "base/gitignore.j2"),
    ]

    has_code = True
    if artifact_type in FRONTEND_TYPES:
        plan += [
            ("package.json", "frontend/package.json.j2"),
            ("src/App.jsx", "frontend/App.jsx.j2"),
        ]
    elif artifact_type in DOCS_TYPES:
        has_code = False
        plan += [
            ("mkdocs.yml", "docs/mkdocs.yml.j2"),
            ("docs/index.md", "docs/index.md.j2"),
        ]
    elif artifact_type in GITOPS_TYPES:
        has_code = False
        plan += [("deploy/application.yaml", "gitops/application.yaml.j2")]
    elif runtime in NODE_RUNTIMES:
        plan += [
            ("package.json", "nodejs/package.json.j2"),
            ("src/index.js", "nodejs/index.js.j2"),
        ]
    elif runtime == "python":
        plan += [
            ("pyproject.toml", "python/pyproject.toml.j2"),
            ("app/main.py", "python/main.py.j2"),
        ]
    else:
        plan += [("src/README.md", "generic/README.md.j2")]

    if phase_rank >= 2:
        if has_code:
            plan.append(("Dockerfile", "standardization/Dockerfile.j2"))
        plan += [
            (".github/workflows/ci.yaml", "standardization/ci.yaml.j2"),
            ("deploy/deployment.yaml", "standardization/deployment.yaml.j2"),
            ("deploy/rbac.yaml", "standardization/rbac.yaml.j2"),
            ("docs/architecture.md", "standardization/architecture.md.j2"),
        ]
    if phase_rank >= 3:
        plan += [
            ("ops/slo.yaml", "operations/slo.yaml.j2"),
            ("ops/runbook.md", "operations/runbook.md.j2"),
            ("ops/security-controls.yaml", "operations/security-controls.yaml.j2"),
            ("ops/cost-optimization.yaml", "operations/cost-optimization.yaml.j2"),
            ("monitoring/alerts.yaml", "operations/alerts.yaml.j2"),
        ]
    if phase_rank >= 4:
        plan += [
            ("policies/security.rego", "governance/security.rego.j2"),
            ("policies/audit.yaml", "governance/audit.yaml.j2"),
            ("policies/cost.rego", "governance/cost.rego.j2"),
            ("compliance/frameworks.yaml", "governance/frameworks.yaml.j2"),
            ("GOVERNANCE.md", "governance/GOVERNANCE.md.j2"),
        ]
    if phase_rank >= 5:
        plan += [
            ("ai/guardrails.yaml", "ai/guardrails.yaml.j2"),
            ("ai/model-card.md", "ai/model-card.md.j2"),
            ("ai/governance.yaml", "ai/governance.yaml.j2"),
            ("ai/budget.yaml", "ai/budget.yaml.j2"),
        ]
    return plan


class SkeletonRenderer:
    """Deterministic Jinja2 renderer for skeleton files and docs."""

    def __init__(self, loader: Optional[BaseLoader] = None) -> None:
        self._env = Environment(
            loader=loader or FileSystemLoader(str(TEMPLATE_DIR)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: Dict[str, Any], path: Optional[str] = None) -> str:
        try:
            return self._env.get_template(template_name).render(**context)
        except TemplateError as e:
            logger.warning("Rendering %s failed: %s", path or template_name, e)
            raise TemplateRenderingError(
                f"Failed to render {path or template_name}: {e}",
                path=path or template_name,
            ) from e

    def render_skeleton(self, plan: FilePlan, context: Dict[str, Any]) -> Dict[str, str]:
        files = [path for path, _ in plan]
        ctx = dict(context, files=files)
        return {path: self.render(template, ctx, path=path) for path, template in plan}

    def render_usage(self, context: Dict[str, Any]) -> str:
        return self.render("docs/usage.md.j2", context, path="docs/usage.md")
