"""
Print or save the API route inventory.

Imports the application and lists every HTTP route with its methods, tags
and endpoint name. Used to review the versioned and legacy flag prefixes
side by side after router changes.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Iterable, Tuple

from fastapi.routing import APIRoute


ROOT = Path(__file__).resolve().parents[1]

# Settings must resolve before the app imports; nothing here touches the DB.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "route-listing-placeholder")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

sys.path.append(str(ROOT / "backend"))

from engage_flags.main import app  # type: ignore  # noqa: E402


def iter_routes(prefix: str | None = None) -> Iterable[Tuple[str, str, str, str]]:
    """Yield (methods, path, tags, endpoint), optionally limited to a path prefix."""
    for route in app.routes:
        if not isinstance(route, APIRoute):
            continue
        if prefix and not route.path.startswith(prefix):
            continue
        methods = sorted(m for m in route.methods or [] if m not in {"HEAD", "OPTIONS"})
        tags = ",".join(str(tag) for tag in route.tags or []) or "-"
        endpoint = getattr(route.endpoint, "__name__", route.name or "")
        yield (",".join(methods) or "GET", route.path, tags, endpoint)


def format_routes(routes: Iterable[Tuple[str, str, str, str]]) -> list[str]:
    return [f"{methods}\t{path}\t{tags}\t{endpoint}" for methods, path, tags, endpoint in routes]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--prefix", help="only list routes under this path prefix")
    parser.add_argument("--out", type=Path, help="write the inventory to this file instead of stdout")
    args = parser.parse_args(argv)

    lines = format_routes(iter_routes(args.prefix))
    if args.out is None:
        print("\n".join(lines))
        return
    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_text("\n".join(lines), encoding="utf-8")
    print(f"Wrote {len(lines)} routes to {args.out}")


if __name__ == "__main__":
    main()
