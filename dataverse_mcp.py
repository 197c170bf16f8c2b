#!/usr/bin/env python3
"""
Dataverse Web API MCP server.

Exposes request builders for the Dataverse OData Web API (and the Power Pages
/_api flavour) as MCP tools that either generate example requests or execute
them against a configured environment.
"""

import argparse
import asyncio
import inspect
import os
import signal
import sys
import traceback
from typing import Optional, Tuple
from dotenv import load_dotenv

from dataverse_mcp_lib import DataverseClient, DataverseConfig, DataverseMCPBridge
from dataverse_mcp_lib.constants import DEFAULT_API_VERSION

# Load environment variables from .env file
load_dotenv()


def parse_http_addr(http_addr: str) -> Tuple[str, int]:
    """Split "host:port", ":port" or "port" into a host and port."""
    addr_parts = http_addr.split(":")
    if len(addr_parts) == 2 and addr_parts[0]:
        return addr_parts[0], int(addr_parts[1])
    if len(addr_parts) == 2:
        return "0.0.0.0", int(addr_parts[1])
    try:
        return "0.0.0.0", int(http_addr)
    except ValueError:
        return "0.0.0.0", 8080


def print_trace_info(bridge):
    """Print the bridge configuration and every registered tool with its parameters."""
    print("=" * 80)
    print("Dataverse MCP Bridge Trace Information")
    print("=" * 80)

    config = bridge.client.config
    print(f"\nEnvironment URL: {config.dataverse_url}")
    print(f"Web API Root: {config.api_base_url}")
    print(f"MCP Name: {bridge.mcp.name}")
    print(f"Tool Prefix: '{bridge.tool_prefix}'")
    print(f"Tool Postfix: '{bridge.tool_postfix}'")
    print(f"Authentication: {'Bearer token' if config.access_token else 'None (generation only)'}")
    if config.solution_context:
        context = config.solution_context
        print(f"Solution Context: {context.solution_unique_name} (prefix: {context.customization_prefix})")
    else:
        print("Solution Context: None")

    tools = bridge.all_registered_tools
    print(f"\nRegistered MCP Tools ({len(tools)} total):")
    print("=" * 60)
    for tool_name in sorted(tools):
        tool_func = tools[tool_name]
        print(f"\nTool: {tool_name}")
        try:
            sig = inspect.signature(tool_func)
            if sig.parameters:
                print("   Parameters:")
                for param_name, param in sig.parameters.items():
                    type_hint = str(param.annotation) if param.annotation != inspect.Parameter.empty else 'Any'
                    has_default = param.default != inspect.Parameter.empty
                    req_str = "optional" if has_default else "required"
                    default_str = f" (default: {param.default})" if has_default and param.default is not None else ""
                    print(f"      - {param_name}: {type_hint} ({req_str}){default_str}")
            else:
                print("   Parameters: None")

            docstring = inspect.getdoc(tool_func)
            if docstring:
                print("   Description:")
                for line in docstring.split('\n')[:5]:
                    print(f"      {line}")
        except Exception as e:
            print(f"   Error inspecting tool: {e}")

    resources = bridge.all_registered_resources
    print(f"\nRegistered MCP Resources ({len(resources)} total):")
    print("=" * 60)
    for uri in sorted(resources):
        print(f"Resource: {uri}")

    print("\n" + "=" * 80)
    print("Trace complete - MCP bridge initialized successfully but not started")
    print("=" * 80)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Dataverse Web API MCP server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--url", dest="url", help="Dataverse environment URL, e.g. https://org.crm.dynamics.com (overrides DATAVERSE_URL env var)")
    parser.add_argument("--token", help="Pre-issued bearer access token (overrides DATAVERSE_ACCESS_TOKEN env var)")
    parser.add_argument("--api-version", help=f"Web API version (overrides DATAVERSE_API_VERSION env var, default: {DEFAULT_API_VERSION})")
    parser.add_argument("--solution", help="Unique name of the solution to use as initial context (overrides DATAVERSE_SOLUTION env var)")
    parser.add_argument("-v", "--verbose", "--debug", dest="verbose", action="store_true", help="Enable verbose output to stderr")
    parser.add_argument("--tool-prefix", help="Custom prefix for tool names")
    parser.add_argument("--tool-postfix", help="Custom postfix for tool names")
    parser.add_argument("--trace", action="store_true", help="Initialize MCP service and print all tools and parameters, then exit (useful for debugging)")
    parser.add_argument("--transport", choices=["stdio", "http", "sse"], default="stdio", help="Transport type")
    parser.add_argument("--http-addr", default=":8080", help="HTTP server address (used with --transport http or sse)")
    return parser


def resolve_setting(flag_value: Optional[str], env_name: str, default: Optional[str] = None) -> Optional[str]:
    """CLI flag wins over the environment (which includes values loaded from .env)."""
    if flag_value:
        return flag_value
    return os.getenv(env_name) or default


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # --- Configuration Handling ---
    # Priority: CLI flag > Environment Variable > .env file
    dataverse_url = resolve_setting(args.url, "DATAVERSE_URL")
    access_token = resolve_setting(args.token, "DATAVERSE_ACCESS_TOKEN")
    api_version = resolve_setting(args.api_version, "DATAVERSE_API_VERSION", DEFAULT_API_VERSION)
    solution = resolve_setting(args.solution, "DATAVERSE_SOLUTION")

    if not dataverse_url:
        print("ERROR: Dataverse environment URL not provided.", file=sys.stderr)
        print("Provide it via the --url flag or the DATAVERSE_URL environment variable.", file=sys.stderr)
        parser.print_help(file=sys.stderr)
        sys.exit(1)

    if args.verbose:
        print(f"[VERBOSE] Using Dataverse environment: {dataverse_url} (API {api_version})", file=sys.stderr)
        if not access_token:
            print("[VERBOSE] No access token configured. Only request generation tools will succeed.", file=sys.stderr)

    # Handle SIGINT (Ctrl+C) and SIGTERM gracefully
    def signal_handler(sig, frame):
        print(f"\n{signal.Signals(sig).name} received, shutting down server...", file=sys.stderr)
        sys.exit(0)
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = DataverseConfig(dataverse_url=dataverse_url, access_token=access_token, api_version=api_version)
        client = DataverseClient(config, verbose=args.verbose)

        if solution:
            context = asyncio.run(client.set_solution_context(solution))
            if args.verbose:
                print(f"[VERBOSE] Solution context: {context.solution_unique_name}", file=sys.stderr)

        bridge = DataverseMCPBridge(
            client,
            verbose=args.verbose,
            tool_prefix=args.tool_prefix,
            tool_postfix=args.tool_postfix
        )

        if args.trace:
            print_trace_info(bridge)
            sys.exit(0)

        if args.transport in ["http", "sse"]:
            host, port = parse_http_addr(args.http_addr)
            bridge.run(transport=args.transport, host=host, port=port)
        else:
            if args.verbose:
                print("[VERBOSE] Using stdio transport", file=sys.stderr)
            bridge.run()
    except Exception as e:
        # Fatal error, print regardless of verbosity
        print("\n--- FATAL ERROR ---", file=sys.stderr)
        print(f"An unexpected error occurred during startup or runtime: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        print("-------------------", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
