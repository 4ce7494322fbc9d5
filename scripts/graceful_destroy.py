#!/usr/bin/env python3
"""
Graceful Destroy

Tear down an EKS environment in dependency order: Argo CD applications,
Karpenter capacity, cluster load balancers and volumes, then the stacks,
then whatever the stacks left behind in the VPC and across the account.

Usage:
  ./scripts/graceful_destroy.py --environment dev --dry-run
  ./scripts/graceful_destroy.py --environment staging --region us-east-1
  ./scripts/graceful_destroy.py --environment dev --auto-approve --skip-stack-destroy
"""

from __future__ import annotations

import sys
from pathlib import Path


def _bootstrap_import_path() -> None:
    script_dir = Path(__file__).resolve().parent
    if str(script_dir) not in sys.path:
        sys.path.insert(0, str(script_dir))


def main() -> int:
    _bootstrap_import_path()
    from graceful_destroy.main import main as impl_main  # type: ignore

    return impl_main(sys.argv)


if __name__ == "__main__":
    raise SystemExit(main())
