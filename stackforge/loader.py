"""
stackforge.loader — Stack-set YAML parser.

stackset.yaml format:

    apiVersion: stackforge/v1
    kind: StackSet
    metadata:
      name: platform
      application: acme
      region: us-west-2
    external:
      parameters: [/shared/kms-key]
      exports: [shared-vpc-id]
    stacks:
      - name: IAM
        template: templates/iam.yml          # or {name: iam.yml, revision: ab12cd34ef56}
        capabilities: [CAPABILITY_NAMED_IAM]
        parameters:
          - BucketParam
          - {name: RoleName, default: app-role}
        outputs:
          - {name: RoleArn, export: role}
        references:
          BucketParam: {parameter: p, version: 1}
      - name: Compute
        nested_in: App
        references:
          RoleArn: {export: role}
          GroupId: {nested_output: {parent: App, child: SecurityGroup, output: GroupId}}

Parser reads the file, normalizes the shorthand forms above and validates
the result into a ``StackSet``. Relative template paths are resolved against
the directory of the stack-set file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from stackforge.core.errors import StackSetParseError
from stackforge.models.stacks import StackSet

API_VERSION = "stackforge/v1"


def load_stack_set(path: str | Path) -> StackSet:
    """Parse a stack-set file.

    Raises:
        StackSetParseError: Format error
        FileNotFoundError: File not found
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Stack-set file not found: {p}")

    with open(p) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise StackSetParseError(f"{p}: invalid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise StackSetParseError(
            f"Stack-set file must be a YAML mapping, got {type(data).__name__}"
        )

    return parse_stack_set_dict(data, base_dir=p.parent)


def parse_stack_set_dict(data: dict[str, Any], base_dir: Path | None = None) -> StackSet:
    """Create a StackSet from a dict."""
    api_version = data.get("apiVersion", "")
    if api_version and api_version != API_VERSION:
        raise StackSetParseError(
            f"Unsupported apiVersion: '{api_version}'. Expected '{API_VERSION}'"
        )

    kind = data.get("kind", "")
    if kind and kind != "StackSet":
        raise StackSetParseError(f"Unsupported kind: '{kind}'. Expected 'StackSet'")

    metadata = data.get("metadata", {})
    if not isinstance(metadata, dict):
        raise StackSetParseError("metadata must be a mapping")
    name = metadata.get("name", "")
    if not name:
        raise StackSetParseError("metadata.name is required")

    external = data.get("external", {}) or {}
    if not isinstance(external, dict):
        raise StackSetParseError("external must be a mapping")

    stacks_raw = data.get("stacks", [])
    if not isinstance(stacks_raw, list):
        raise StackSetParseError("stacks must be a list")

    stacks = [_normalize_stack(i, raw, base_dir) for i, raw in enumerate(stacks_raw)]

    try:
        return StackSet(
            name=name,
            application=metadata.get("application", ""),
            region=metadata.get("region", "us-west-2"),
            stacks=stacks,
            external_parameters=list(external.get("parameters", []) or []),
            external_exports=list(external.get("exports", []) or []),
        )
    except ValidationError as exc:
        raise StackSetParseError(f"Invalid stack set {name!r}:\n{exc}") from exc


# ---------------------------------------------------------------------------
# Shorthand normalization
# ---------------------------------------------------------------------------


def _normalize_stack(index: int, raw: Any, base_dir: Path | None) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise StackSetParseError(f"stacks[{index}] must be a mapping")
    name = raw.get("name")
    if not name:
        raise StackSetParseError(f"stacks[{index}].name is required")

    stack: dict[str, Any] = {
        "name": name,
        "parameters": [_normalize_parameter(name, p) for p in raw.get("parameters", []) or []],
        "outputs": [_normalize_output(name, o) for o in raw.get("outputs", []) or []],
        "references": {
            ref_name: _normalize_reference(name, ref_name, spec)
            for ref_name, spec in (raw.get("references", {}) or {}).items()
        },
        "template": _normalize_template(name, raw.get("template"), base_dir),
        "nested_in": raw.get("nested_in"),
        "writes_parameters": list(raw.get("writes_parameters", []) or []),
        "capabilities": list(raw.get("capabilities", []) or []),
        "parameter_values": {
            str(k): str(v) for k, v in (raw.get("values", {}) or {}).items()
        },
        "tags": {str(k): str(v) for k, v in (raw.get("tags", {}) or {}).items()},
    }
    return stack


def _normalize_parameter(stack: str, raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        return {"name": raw}
    if isinstance(raw, dict) and "name" in raw:
        param = {"name": raw["name"], "type": raw.get("type", "String")}
        if raw.get("default") is not None:
            param["default"] = str(raw["default"])
        return param
    raise StackSetParseError(f"Stack {stack!r}: invalid parameter entry {raw!r}")


def _normalize_output(stack: str, raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        return {"name": raw}
    if isinstance(raw, dict) and "name" in raw:
        return {
            "name": raw["name"],
            "description": raw.get("description", ""),
            "export_name": raw.get("export", raw.get("export_name")),
        }
    raise StackSetParseError(f"Stack {stack!r}: invalid output entry {raw!r}")


def _normalize_reference(stack: str, ref_name: str, raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise StackSetParseError(
            f"Stack {stack!r}: reference {ref_name!r} must be a mapping"
        )
    if "kind" in raw:
        return dict(raw)
    if "export" in raw:
        return {"kind": "export", "export_name": raw["export"]}
    if "parameter" in raw:
        if "version" not in raw:
            raise StackSetParseError(
                f"Stack {stack!r}: reference {ref_name!r} must pin a parameter version"
            )
        return {
            "kind": "external_parameter",
            "path": raw["parameter"],
            "version": raw["version"],
        }
    if "nested_output" in raw:
        nested = raw["nested_output"]
        if not isinstance(nested, dict):
            raise StackSetParseError(
                f"Stack {stack!r}: reference {ref_name!r}: nested_output must be a mapping"
            )
        return {
            "kind": "nested_output",
            "parent_stack": nested.get("parent", ""),
            "child_stack": nested.get("child", ""),
            "output_name": nested.get("output", ""),
        }
    raise StackSetParseError(
        f"Stack {stack!r}: reference {ref_name!r} must be one of "
        f"export, parameter or nested_output"
    )


def _normalize_template(stack: str, raw: Any, base_dir: Path | None) -> dict[str, Any]:
    if raw is None:
        raise StackSetParseError(f"Stack {stack!r}: template is required")
    if isinstance(raw, str):
        source = _resolve_source(raw, base_dir)
        if Path(source).is_dir():
            raise StackSetParseError(
                f"Stack {stack!r}: template {raw!r} is a directory; use "
                f"{{name: <entry template>, source: {raw}}} to name the template "
                f"the stack is deployed from"
            )
        return {"template_name": Path(raw).name, "source_path": source}
    if isinstance(raw, dict) and "name" in raw:
        template: dict[str, Any] = {"template_name": raw["name"]}
        if raw.get("revision"):
            template["revision"] = str(raw["revision"])
        if raw.get("alias"):
            template["alias"] = raw["alias"]
        if raw.get("source"):
            source = _resolve_source(raw["source"], base_dir)
            # Bundle members are published under their path inside the directory.
            if Path(source).is_dir() and not (Path(source) / raw["name"]).is_file():
                raise StackSetParseError(
                    f"Stack {stack!r}: template {raw['name']!r} is not in {raw['source']!r}"
                )
            template["source_path"] = source
        return template
    raise StackSetParseError(f"Stack {stack!r}: invalid template entry {raw!r}")


def _resolve_source(source: str, base_dir: Path | None) -> str:
    path = Path(source)
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return str(path)
