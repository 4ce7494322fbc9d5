from __future__ import annotations

from typing import Sequence

from .model import Ctx, Summary

WIDTH = 58


def box(lines: Sequence[str], title: str = "") -> str:
    rows = ["╔" + "═" * WIDTH + "╗"]
    if title:
        rows.append("║" + f"   {title}".ljust(WIDTH)[:WIDTH] + "║")
        rows.append("╠" + "═" * WIDTH + "╣")
    for line in lines:
        rows.append("║" + f"   {line}".ljust(WIDTH)[:WIDTH] + "║")
    rows.append("╚" + "═" * WIDTH + "╝")
    return "\n".join(rows)


def print_plan(ctx: Ctx) -> None:
    print(
        box(
            [
                f"Environment:  {ctx.environment}",
                f"Region:       {ctx.region}",
                f"Cluster:      {ctx.cluster_name}",
                f"Account:      {ctx.account_id}",
                f"Identity:     {ctx.caller_arn}",
                f"Dry Run:      {str(ctx.dry_run).lower()}",
                f"Skip Stacks:  {str(ctx.skip_stack_destroy).lower()}",
                f"kubectl:      {'available' if ctx.kubectl_available else 'unavailable'}",
            ],
            title="Destroy Plan",
        )
    )


def print_summary(ctx: Ctx, summary: Summary) -> None:
    print("")
    print("### Phases")
    for o in summary.outcomes:
        print(
            f"- **{o.name}**: {o.status} "
            f"(errors={len(o.errors)}, warnings={len(o.warnings)}, {o.duration:.0f}s)"
        )

    failed = summary.failed_actions()
    if failed:
        print("")
        print("### Failed actions")
        for a in failed[:20]:
            msg = (a.stderr or "").splitlines()[-1] if a.stderr else ""
            print(f"- **{a.desc}**: rc={a.rc} {msg}")
        if len(failed) > 20:
            print(f"- ... and {len(failed) - 20} more")

    errors = [r for r in summary.records if r.severity == "error"]
    if errors:
        print("")
        print("### Errors")
        for r in errors:
            print(f"- [{r.phase}] {r.message}")

    print("")
    if ctx.dry_run:
        headline = f"Dry run complete ({len(summary.actions)} planned actions)"
    elif summary.error_count:
        headline = f"Destroy completed with {summary.error_count} error(s)"
    else:
        headline = "Destroy complete"
    print(
        box(
            [
                f"Environment:  {ctx.environment}",
                f"Duration:     {summary.elapsed_str()}",
                f"Errors:       {summary.error_count}",
                f"Warnings:     {summary.warning_count}",
            ],
            title=headline,
        )
    )
