from __future__ import annotations

import json
from typing import List, Mapping, Optional, Sequence

from .awscli import CliError, CommandRunner
from .model import ResourceRef

STRIP_FINALIZERS_PATCH = json.dumps({"metadata": {"finalizers": None}})


class Kubectl(CommandRunner):
    def __init__(
        self,
        *,
        context: Optional[str] = None,
        env: Mapping[str, str] | None = None,
    ):
        super().__init__(env=env)
        self.context = context

    @property
    def prefix(self) -> Sequence[str]:  # type: ignore[override]
        if self.context:
            return ("kubectl", "--context", self.context)
        return ("kubectl",)

    def json_flags(self) -> Sequence[str]:
        return ("-o", "json")

    def reachable(self) -> bool:
        return self.run(["cluster-info", "--request-timeout=10s"]).ok

    def crd_installed(self, crd: str) -> bool:
        """
        A missing CRD means the class was never installed, which is not an error.
        Anything else (API down, auth) is raised so the caller records it.
        """
        res = self.run(["get", "crd", crd])
        if res.ok:
            return True
        if res.not_found:
            return False
        raise CliError(f"kubectl get crd {crd} failed: {res.stderr}")

    def list(
        self,
        kind: str,
        *,
        namespace: Optional[str] = None,
        all_namespaces: bool = False,
        selector: Optional[str] = None,
        spec_type: Optional[str] = None,
    ) -> List[ResourceRef]:
        """`spec_type` filters client-side; older API servers reject a spec.type field selector."""
        args = ["get", kind]
        if all_namespaces:
            args.append("--all-namespaces")
        elif namespace:
            args.extend(["-n", namespace])
        if selector:
            args.extend(["-l", selector])
        data = self.json(args) or {}
        refs: List[ResourceRef] = []
        for item in data.get("items", []) or []:
            meta = item.get("metadata", {}) or {}
            name = meta.get("name")
            if not name:
                continue
            if spec_type and (item.get("spec") or {}).get("type") != spec_type:
                continue
            refs.append(
                ResourceRef(
                    kind=kind,
                    ident=name,
                    scope=meta.get("namespace") or "",
                    discovery="list",
                    state="terminating" if meta.get("deletionTimestamp") else "live",
                    finalizers=tuple(meta.get("finalizers") or ()),
                )
            )
        return refs

    @staticmethod
    def delete_args(ref: ResourceRef) -> List[str]:
        args = ["delete", ref.kind, ref.ident, "--wait=false", "--ignore-not-found"]
        if ref.scope:
            args.extend(["-n", ref.scope])
        return args

    @staticmethod
    def strip_finalizers_args(ref: ResourceRef) -> List[str]:
        args = ["patch", ref.kind, ref.ident, "--type=merge", "-p", STRIP_FINALIZERS_PATCH]
        if ref.scope:
            args.extend(["-n", ref.scope])
        return args
