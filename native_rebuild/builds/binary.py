"""Pre-gyp binary layout for a target identity.

Modules published with node-pre-gyp declare a ``binary`` section in
``package.json`` whose ``module_path`` is a template such as
``./lib/binding/{node_abi}-{platform}-{arch}``. This module handles:
- Expanding binary templates with concrete values for an identity
- Resolving ``module_path`` to a directory inside the module
- The ``--<key>=<value>`` options node-gyp needs to configure such modules
"""

from __future__ import annotations

import logging
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from native_rebuild.errors import BuildProcessError, StructuralTreeError
from native_rebuild.tree.manifest import PackageManifest, load_manifest
from native_rebuild.types import ModuleCandidate, TargetIdentity, host_platform

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([a-z_]+)\}")
_VERSION = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def node_abi(identity: TargetIdentity, runtime_name: str) -> str:
    """Return the pre-gyp ABI label for a runtime, e.g. ``electron-v28.1``."""
    match = _VERSION.match(identity.runtime_version)
    if match is None:
        raise BuildProcessError(
            f"Cannot derive ABI label from runtime version {identity.runtime_version!r}",
            code="invalid_module_path",
        )
    return f"{runtime_name}-v{match.group(1)}.{match.group(2) or '0'}"


def host_libc() -> str:
    """Return the libc family pre-gyp uses in binary paths."""
    if host_platform() != "linux":
        return "unknown"
    name, _ = platform.libc_ver()
    return "glibc" if name == "glibc" else "musl"


def template_values(
    manifest: PackageManifest,
    identity: TargetIdentity,
    runtime_name: str,
) -> dict[str, str]:
    """Build the placeholder values available to binary templates."""
    version = manifest.version or ""
    match = _VERSION.match(version)
    major, minor, patch = (match.groups("") if match else ("", "", ""))
    abi = node_abi(identity, runtime_name)

    values = {
        "name": manifest.name or "",
        "version": version,
        "major": major,
        "minor": minor,
        "patch": patch,
        "configuration": identity.build_type,
        "platform": host_platform(),
        "arch": identity.arch.value,
        "target_arch": identity.arch.value,
        "runtime": runtime_name,
        "node_abi": abi,
        "libc": host_libc(),
        "toolset": "",
        "node_napi_label": abi,
    }

    binary = manifest.binary
    if binary is not None:
        if binary.module_name:
            values["module_name"] = binary.module_name
        if binary.napi_versions:
            napi = str(max(binary.napi_versions))
            values["napi_build_version"] = napi
            values["node_napi_label"] = f"napi-v{napi}"
    return values


def expand_template(template: str, values: dict[str, str]) -> str:
    """Substitute every ``{placeholder}`` in a binary template.

    Raises:
        BuildProcessError: If a placeholder has no value.
    """

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            raise BuildProcessError(
                f"Unknown placeholder {{{key}}} in binary template {template!r}",
                code="invalid_module_path",
            )
        return values[key]

    return _PLACEHOLDER.sub(substitute, template)


def resolve_module_dir(module_dir: Path, module_path: str) -> Path:
    """Resolve an expanded ``module_path`` to a directory inside the module.

    Raises:
        BuildProcessError: If the path is empty, absolute or escapes the module.
    """
    relative = PurePosixPath(module_path)
    if not module_path.strip() or relative.is_absolute():
        raise BuildProcessError(
            f"module_path must be relative to the module: {module_path!r}",
            code="invalid_module_path",
        )

    root = module_dir.resolve()
    target = (root / relative).resolve()
    try:
        target.relative_to(root)
    except ValueError:
        raise BuildProcessError(
            f"module_path {module_path!r} resolves outside {root}",
            code="invalid_module_path",
        ) from None
    return target


@dataclass(frozen=True)
class BinaryLayout:
    """Where a pre-gyp module loads its addon from, for one identity.

    Attributes:
        module_dir: Resolved load directory inside the module.
        module_name: Addon file stem, if declared.
        gyp_options: Expanded ``binary`` fields passed to node-gyp.
    """

    module_dir: Path
    module_name: str | None = None
    gyp_options: dict[str, str] = field(default_factory=dict)


def resolve_binary_layout(
    candidate: ModuleCandidate,
    identity: TargetIdentity,
    runtime_name: str,
) -> BinaryLayout | None:
    """Resolve the pre-gyp layout of a module, if it declares one.

    Returns:
        BinaryLayout, or None if the module has no ``binary.module_path``.

    Raises:
        BuildProcessError: If the manifest is unreadable or the template
            is invalid for the module.
    """
    try:
        manifest = load_manifest(candidate.path)
    except StructuralTreeError as e:
        raise BuildProcessError(str(e), code="manifest_error") from e

    binary = manifest.binary
    if binary is None or not binary.module_path:
        return None

    values = template_values(manifest, identity, runtime_name)
    module_dir = resolve_module_dir(
        candidate.path, expand_template(binary.module_path, values)
    )

    options = {"module_path": str(module_dir)}
    if binary.module_name:
        options["module_name"] = expand_template(binary.module_name, values)
    for key in ("napi_build_version", "node_napi_label"):
        if key in values:
            options[key] = values[key]

    logger.debug("Binary layout for %s: %s", candidate.name, module_dir)
    return BinaryLayout(
        module_dir=module_dir,
        module_name=options.get("module_name"),
        gyp_options=options,
    )


__all__ = [
    "BinaryLayout",
    "expand_template",
    "host_libc",
    "node_abi",
    "resolve_binary_layout",
    "resolve_module_dir",
    "template_values",
]
