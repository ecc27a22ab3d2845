#!/usr/bin/env python3
"""Org-chart CLI - drive the local org-chart service from the shell."""

import argparse
import json
import sys
from pathlib import Path

import httpx

from orgchart_core.config import SERVICE_HOST, SERVICE_PORT

API_BASE = f"http://{SERVICE_HOST}:{SERVICE_PORT}/api"


def _json_out(data, code=0):
    print(json.dumps(data, ensure_ascii=False))
    sys.exit(code)


def api_request(method: str, endpoint: str, json_body=None, params=None) -> dict:
    """Make a request to the org-chart service, exiting with a JSON error on failure."""
    url = f"{API_BASE}{endpoint}"
    if params:
        params = {k: v for k, v in params.items() if v is not None}
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.request(method, url, json=json_body, params=params)
    except httpx.HTTPError as e:
        _json_out({"status": "error", "error": f"Connection failed: {e}. Is the org-chart service running?"}, 1)

    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", "Unknown error")
        except ValueError:
            detail = response.text
        _json_out({"status": "error", "error": f"API error ({response.status_code}): {detail}"}, 1)
    return response.json()


def _parse_json_arg(value):
    """Parse a JSON object argument, or return None."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        _json_out({"status": "error", "error": f"Invalid JSON argument: {value}"}, 1)


# ── Flow ─────────────────────────────────────────────────────────────────────

def cmd_get_current(args):
    _json_out(api_request("GET", "/flow"))


def cmd_set_info(args):
    _json_out(api_request("PATCH", "/flow", json_body={
        "file_name": args.name,
        "file_version": args.version,
    }))


def cmd_validate(args):
    _json_out(api_request("GET", "/flow/validate"))


def cmd_export(args):
    result = api_request("GET", "/flow/export")
    path = Path(args.output) if args.output else Path(result["file_name"])
    path.write_text(json.dumps(result["document"], indent=2, ensure_ascii=False), encoding="utf-8")
    _json_out({"status": "exported", "path": str(path)})


def cmd_import(args):
    try:
        payload = json.loads(Path(args.file).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        _json_out({"status": "error", "error": f"Cannot read {args.file}: {e}"}, 1)
    _json_out(api_request("POST", "/flow/import", json_body=payload, params={"confirm": "true" if args.yes else "false"}))


def cmd_reset(args):
    _json_out(api_request("POST", "/flow/reset", params={"confirm": "true" if args.yes else "false"}))


# ── Nodes ────────────────────────────────────────────────────────────────────

def cmd_add_person(args):
    data = {"name": args.name, "role": args.role}
    _json_out(api_request("POST", "/nodes", json_body={
        "kind": "person",
        "x": args.x,
        "y": args.y,
        "data": {k: v for k, v in data.items() if v is not None},
    }))


def cmd_add_section(args):
    data = {"title": args.title} if args.title else None
    _json_out(api_request("POST", "/nodes", json_body={
        "kind": "section", "x": args.x, "y": args.y, "data": data,
    }))


def cmd_update_node(args):
    _json_out(api_request("PATCH", f"/nodes/{args.node_id}", json_body={
        "data": _parse_json_arg(args.data),
        "coalesce": False,
    }))


def cmd_delete_node(args):
    _json_out(api_request("DELETE", f"/nodes/{args.node_id}"))


def cmd_select(args):
    _json_out(api_request("PUT", "/selection", json_body={"node_ids": args.node_ids}))


def cmd_delete_selection(args):
    _json_out(api_request("DELETE", "/selection"))


# ── Connections ──────────────────────────────────────────────────────────────

def cmd_connect(args):
    _json_out(api_request("POST", "/connections", json_body={
        "source": args.source,
        "target": args.target,
        "target_anchor": args.anchor,
    }))


def cmd_update_connection(args):
    _json_out(api_request("PATCH", f"/connections/{args.connection_id}", json_body={
        "color": args.color,
        "dashed": args.dashed,
        "stroke_width": args.stroke_width,
    }))


def cmd_delete_connection(args):
    _json_out(api_request("DELETE", f"/connections/{args.connection_id}"))


# ── Layout / clipboard / presets ─────────────────────────────────────────────

def cmd_auto_layout(args):
    _json_out(api_request("POST", "/layout/auto"))


def cmd_copy(args):
    _json_out(api_request("POST", "/clipboard/copy"))


def cmd_paste(args):
    _json_out(api_request("POST", "/clipboard/paste"))


def cmd_list_presets(args):
    _json_out(api_request("GET", "/presets"))


def cmd_create_preset(args):
    _json_out(api_request("POST", "/presets"))


def cmd_apply_preset(args):
    _json_out(api_request("POST", f"/presets/{args.preset_id}/apply"))


def cmd_rename_preset(args):
    _json_out(api_request("PATCH", f"/presets/{args.preset_id}", json_body={"name": args.name}))


def cmd_delete_preset(args):
    _json_out(api_request("DELETE", f"/presets/{args.preset_id}"))


# ── History ──────────────────────────────────────────────────────────────────

def cmd_undo(args):
    _json_out(api_request("POST", "/undo"))


def cmd_redo(args):
    _json_out(api_request("POST", "/redo"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="orgchart", description="Org-chart service client")
    sub = parser.add_subparsers(dest="command", required=True)

    # Flow
    sub.add_parser("get-current")

    p = sub.add_parser("set-info")
    p.add_argument("--name", default=None)
    p.add_argument("--version", type=int, default=None)

    sub.add_parser("validate")

    p = sub.add_parser("export")
    p.add_argument("--output", default=None)

    p = sub.add_parser("import")
    p.add_argument("--file", required=True)
    p.add_argument("--yes", action="store_true", help="Replace the current flow")

    p = sub.add_parser("reset")
    p.add_argument("--yes", action="store_true", help="Really clear the flow")

    # Nodes
    p = sub.add_parser("add-person")
    p.add_argument("--name", default=None)
    p.add_argument("--role", default=None)
    p.add_argument("--x", type=float, default=100)
    p.add_argument("--y", type=float, default=100)

    p = sub.add_parser("add-section")
    p.add_argument("--title", default=None)
    p.add_argument("--x", type=float, default=50)
    p.add_argument("--y", type=float, default=50)

    p = sub.add_parser("update-node")
    p.add_argument("--node-id", required=True)
    p.add_argument("--data", required=True, help='JSON object, e.g. \'{"name": "Alice"}\'')

    p = sub.add_parser("delete-node")
    p.add_argument("--node-id", required=True)

    p = sub.add_parser("select")
    p.add_argument("node_ids", nargs="*")

    sub.add_parser("delete-selection")

    # Connections
    p = sub.add_parser("connect")
    p.add_argument("--source", required=True)
    p.add_argument("--target", required=True)
    p.add_argument("--anchor", choices=["top", "left", "right"], default="top")

    p = sub.add_parser("update-connection")
    p.add_argument("--connection-id", required=True)
    p.add_argument("--color", default=None)
    p.add_argument("--dashed", action=argparse.BooleanOptionalAction, default=None)
    p.add_argument("--stroke-width", type=float, default=None)

    p = sub.add_parser("delete-connection")
    p.add_argument("--connection-id", required=True)

    # Layout, clipboard, presets
    sub.add_parser("auto-layout")
    sub.add_parser("copy")
    sub.add_parser("paste")
    sub.add_parser("list-presets")
    sub.add_parser("create-preset")

    p = sub.add_parser("apply-preset")
    p.add_argument("--preset-id", required=True)

    p = sub.add_parser("rename-preset")
    p.add_argument("--preset-id", required=True)
    p.add_argument("--name", required=True)

    p = sub.add_parser("delete-preset")
    p.add_argument("--preset-id", required=True)

    # History
    sub.add_parser("undo")
    sub.add_parser("redo")

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    cmd_map = {
        "get-current": cmd_get_current,
        "set-info": cmd_set_info,
        "validate": cmd_validate,
        "export": cmd_export,
        "import": cmd_import,
        "reset": cmd_reset,
        "add-person": cmd_add_person,
        "add-section": cmd_add_section,
        "update-node": cmd_update_node,
        "delete-node": cmd_delete_node,
        "select": cmd_select,
        "delete-selection": cmd_delete_selection,
        "connect": cmd_connect,
        "update-connection": cmd_update_connection,
        "delete-connection": cmd_delete_connection,
        "auto-layout": cmd_auto_layout,
        "copy": cmd_copy,
        "paste": cmd_paste,
        "list-presets": cmd_list_presets,
        "create-preset": cmd_create_preset,
        "apply-preset": cmd_apply_preset,
        "rename-preset": cmd_rename_preset,
        "delete-preset": cmd_delete_preset,
        "undo": cmd_undo,
        "redo": cmd_redo,
    }
    cmd_map[args.command](args)


if __name__ == "__main__":
    main()
