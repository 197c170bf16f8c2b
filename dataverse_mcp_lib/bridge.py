"""
MCP bridge exposing the Dataverse Web API request builders as tools and resources.
"""

import json
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError, ToolError

from .client import DataverseClient
from .entity_resolver import EntityResolver
from .renderer import AUTH_CONTEXT_GUIDE, render_portal_report, render_webapi_report
from .request_builder import PortalRequestBuilder, WebAPIRequestBuilder

MAX_TOOL_NAME_LENGTH = 64

EXAMPLE_RECORD_ID = "{record-id}"

# operation -> (section title, builder parameters)
WEBAPI_EXAMPLE_PRESETS = {
    'retrieve': ("Retrieve Single Record", {
        'entity_id': EXAMPLE_RECORD_ID,
        'select': ['name', 'emailaddress1'],
        'expand': 'primarycontactid($select=fullname,emailaddress1)',
    }),
    'retrieveMultiple': ("Retrieve Multiple Records", {
        'select': ['name', 'emailaddress1', 'telephone1'],
        'filter': 'statecode eq 0',
        'orderby': 'name asc',
        'top': 10,
    }),
    'create': ("Create New Record", {
        'data': {'name': 'Sample Account', 'emailaddress1': 'sample@example.com', 'telephone1': '555-0123'},
        'prefer': ['return=representation'],
    }),
    'update': ("Update Existing Record", {
        'entity_id': EXAMPLE_RECORD_ID,
        'data': {'name': 'Updated Account Name', 'emailaddress1': 'updated@example.com'},
        'if_match': '*',
    }),
    'delete': ("Delete Record", {'entity_id': EXAMPLE_RECORD_ID}),
}

PORTAL_EXAMPLE_PRESETS = {
    'retrieve': ("Retrieve Single Record from PowerPages", {
        'entity_id': EXAMPLE_RECORD_ID,
        'select': ['fullname', 'emailaddress1'],
    }),
    'retrieveMultiple': ("Retrieve Multiple Records from PowerPages", {
        'select': ['fullname', 'emailaddress1', 'telephone1'],
        'filter': 'statecode eq 0',
        'orderby': 'fullname asc',
        'top': 10,
    }),
    'create': ("Create New Record in PowerPages", {
        'data': {'fullname': 'John Doe', 'emailaddress1': 'john@example.com', 'telephone1': '555-0123'},
        'request_verification_token': True,
    }),
    'update': ("Update Record in PowerPages", {
        'entity_id': EXAMPLE_RECORD_ID,
        'data': {'fullname': 'John Updated', 'emailaddress1': 'john.updated@example.com'},
        'request_verification_token': True,
    }),
    'delete': ("Delete Record in PowerPages", {
        'entity_id': EXAMPLE_RECORD_ID,
        'request_verification_token': True,
    }),
}


class DataverseMCPBridge:
    """Registers Dataverse Web API tools and resource templates on a FastMCP server."""

    def __init__(self, client: DataverseClient, mcp_name: str = "dataverse-mcp", verbose: bool = False,
                 tool_prefix: Optional[str] = None, tool_postfix: Optional[str] = None):
        self.client = client
        self.verbose = verbose
        self.tool_prefix = tool_prefix or ""
        self.tool_postfix = tool_postfix or ""
        self.mcp = FastMCP(name=mcp_name)
        self.all_registered_tools: Dict[str, Any] = {}
        self.all_registered_resources: Dict[str, Any] = {}

        self.resolver = EntityResolver(client, verbose=verbose)
        self.webapi_builder = WebAPIRequestBuilder(client, client.config, verbose=verbose)
        self.portal_builder = PortalRequestBuilder(client, client.config, verbose=verbose)

        self._log_verbose("Registering MCP Tools...")
        self._register_tools()
        self._log_verbose(f"Registered {len(self.all_registered_tools)} tools.")
        self._register_resources()
        self._log_verbose(f"Registered {len(self.all_registered_resources)} resources.")

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Bridge VERBOSE] {message}", file=sys.stderr)

    def _make_tool_name(self, base_name: str) -> str:
        """Generate a tool name with the configured prefix and postfix, at most 64 chars."""
        full_name = f"{self.tool_prefix}{base_name}{self.tool_postfix}"
        if len(full_name) <= MAX_TOOL_NAME_LENGTH:
            return full_name

        max_base = MAX_TOOL_NAME_LENGTH - len(self.tool_prefix) - len(self.tool_postfix)
        if max_base <= 0:
            # Prefix/postfix too long, keep the base name only
            return base_name[:MAX_TOOL_NAME_LENGTH]
        return f"{self.tool_prefix}{base_name[:max_base]}{self.tool_postfix}"

    def _register(self, func, base_name: str):
        tool_name = self._make_tool_name(base_name)
        try:
            self.mcp.tool(func, name=tool_name)
            self.all_registered_tools[tool_name] = func
            self._log_verbose(f"Registered tool: {tool_name}")
        except Exception as e:
            print(f"ERROR: Failed to register tool {tool_name}: {e}", file=sys.stderr)
            if self.verbose:
                traceback.print_exc(file=sys.stderr)

    def _register_resource(self, func, uri: str, name: str, description: str, mime_type: str):
        try:
            self.mcp.resource(uri, name=name, description=description, mime_type=mime_type)(func)
            self.all_registered_resources[uri] = func
            self._log_verbose(f"Registered resource: {uri}")
        except Exception as e:
            print(f"ERROR: Failed to register resource {uri}: {e}", file=sys.stderr)
            if self.verbose:
                traceback.print_exc(file=sys.stderr)

    async def _guard(self, error_label: str, impl, error_type=ToolError, **kwargs) -> str:
        """Run a tool or resource implementation, reporting any failure as ``error_type``."""
        try:
            return await impl(**kwargs)
        except (ToolError, ResourceError):
            raise
        except Exception as e:
            err_msg = f"{error_label}: {e}"
            print(f"ERROR: {err_msg}", file=sys.stderr)
            if self.verbose:
                traceback.print_exc(file=sys.stderr)
            raise error_type(err_msg) from e

    # --- Tool Implementation Logic ---

    async def _impl_generate_webapi_call(self, operation: str, **params) -> str:
        request, entity_info = await self.webapi_builder.build(operation, **params)
        return render_webapi_report(
            request, entity_info,
            entity_set_name=params.get('entity_set_name'),
            entity_id=params.get('entity_id')
        )

    async def _impl_generate_powerpages_webapi_call(self, operation: str, **params) -> str:
        include_auth_context = params.pop('include_auth_context', False)
        request, entity_info = await self.portal_builder.build(operation, **params)
        return render_portal_report(
            request, entity_info,
            entity_label=params.get('logical_entity_name'),
            include_auth_context=include_auth_context
        )

    async def _impl_execute_webapi_call(self, operation: str, **params) -> str:
        # Sample bodies are for generated examples only, never sent
        if operation in ('create', 'update') and params.get('data') is None:
            raise ValueError("data is required for create/update when executing")
        params['include_auth_header'] = False
        request, _ = await self.webapi_builder.build(operation, **params)
        self._log_verbose(f"Executing {request.method} {request.endpoint}")
        result = await self.client.request(request.method, request.endpoint, data=request.body,
                                           headers=request.headers)
        if result is None:
            result = {
                "status": "success",
                "operation": operation,
                "message": f"{request.method} {request.endpoint} completed with no content"
            }
        return json.dumps(result, indent=2, default=str)

    async def _impl_get_entity_info(self, entity_name: str) -> str:
        if not entity_name:
            raise ValueError("entity_name is required")
        entity_info = await self.resolver.resolve(entity_name)
        result = entity_info.model_dump()
        result['is_resolved'] = entity_info.is_resolved
        return json.dumps(result, indent=2)

    async def _impl_set_solution_context(self, solution_unique_name: str) -> str:
        if not solution_unique_name:
            raise ValueError("solution_unique_name is required")
        context = await self.client.set_solution_context(solution_unique_name)
        return json.dumps({
            "message": f"Solution context set to '{context.solution_unique_name}'",
            "solution_context": context.model_dump()
        }, indent=2)

    async def _impl_get_solution_context(self) -> str:
        context = self.client.get_solution_context()
        if not context:
            return json.dumps({"message": "No solution context is set", "solution_context": None}, indent=2)
        return json.dumps({"solution_context": context.model_dump()}, indent=2)

    async def _impl_clear_solution_context(self) -> str:
        previous = self.client.clear_solution_context()
        if not previous:
            return json.dumps({"message": "No solution context was set"}, indent=2)
        return json.dumps({
            "message": f"Solution context '{previous.solution_unique_name}' cleared",
            "previous_solution_context": previous.model_dump()
        }, indent=2)

    async def _impl_webapi_examples(self, operation: str, entity_set_name: Optional[str] = None) -> str:
        title, preset = WEBAPI_EXAMPLE_PRESETS.get(operation, (f"{operation} Operation", {}))
        if not entity_set_name and operation in WEBAPI_EXAMPLE_PRESETS:
            entity_set_name = 'accounts'
        report = await self._impl_generate_webapi_call(operation, entity_set_name=entity_set_name, **preset)
        return f"# Dataverse WebAPI Examples - {operation}\n\n## {title}\n\n{report}"

    async def _impl_powerpages_examples(self, operation: str, entity_name: Optional[str] = None) -> str:
        title, preset = PORTAL_EXAMPLE_PRESETS.get(operation, (f"{operation} Operation in PowerPages", {}))
        if not entity_name and operation in PORTAL_EXAMPLE_PRESETS:
            entity_name = 'contacts'
        report = await self._impl_generate_powerpages_webapi_call(
            operation, logical_entity_name=entity_name, include_auth_context=True, **preset
        )
        return f"# PowerPages WebAPI Examples - {operation}\n\n## {title}\n\n{report}"

    # --- Registration ---

    def _register_tools(self):
        bridge = self

        async def generate_webapi_call(
            operation: str,
            entity_set_name: Optional[str] = None,
            entity_id: Optional[str] = None,
            select: Optional[List[str]] = None,
            filter: Optional[str] = None,
            orderby: Optional[str] = None,
            top: Optional[int] = None,
            skip: Optional[int] = None,
            expand: Optional[str] = None,
            count: Optional[bool] = None,
            data: Optional[Dict[str, Any]] = None,
            prefer: Optional[List[str]] = None,
            if_match: Optional[str] = None,
            if_none_match: Optional[str] = None,
            caller_id: Optional[str] = None,
            relationship_name: Optional[str] = None,
            related_entity_set_name: Optional[str] = None,
            related_entity_id: Optional[str] = None,
            action_or_function_name: Optional[str] = None,
            parameters: Optional[Dict[str, Any]] = None,
            include_auth_header: bool = False,
            include_solution_context: bool = True,
        ) -> str:
            """Generate the HTTP request, curl command and JavaScript fetch example for a Dataverse
            Web API operation without executing it. Operation is one of: retrieve, retrieveMultiple,
            create, update, delete, associate, disassociate, callAction, callFunction.
            entity_set_name accepts a logical name ("account") or an entity set name ("accounts").
            Lookup columns in data may be given by logical name; they are rewritten to
            "<navigationProperty>@odata.bind" with a relative "/entityset(id)" value."""
            return await bridge._guard(
                "Error generating WebAPI call", bridge._impl_generate_webapi_call,
                operation=operation, entity_set_name=entity_set_name, entity_id=entity_id,
                select=select, filter=filter, orderby=orderby, top=top, skip=skip,
                expand=expand, count=count, data=data, prefer=prefer, if_match=if_match,
                if_none_match=if_none_match, caller_id=caller_id,
                relationship_name=relationship_name, related_entity_set_name=related_entity_set_name,
                related_entity_id=related_entity_id, action_or_function_name=action_or_function_name,
                parameters=parameters, include_auth_header=include_auth_header,
                include_solution_context=include_solution_context
            )

        async def generate_powerpages_webapi_call(
            operation: str,
            logical_entity_name: str,
            entity_id: Optional[str] = None,
            select: Optional[List[str]] = None,
            filter: Optional[str] = None,
            orderby: Optional[str] = None,
            top: Optional[int] = None,
            skip: Optional[int] = None,
            expand: Optional[str] = None,
            count: Optional[bool] = None,
            data: Optional[Dict[str, Any]] = None,
            base_url: Optional[str] = None,
            request_verification_token: bool = False,
            custom_headers: Optional[Dict[str, str]] = None,
            include_auth_context: bool = False,
        ) -> str:
            """Generate Power Pages portal Web API examples (/_api endpoints): raw HTTP, curl,
            fetch and a React component, plus @odata.bind notes and table schema. Operation is one
            of: retrieve, retrieveMultiple, create, update, delete. base_url is the portal site URL."""
            return await bridge._guard(
                "Error generating PowerPages WebAPI call", bridge._impl_generate_powerpages_webapi_call,
                operation=operation, logical_entity_name=logical_entity_name, entity_id=entity_id,
                select=select, filter=filter, orderby=orderby, top=top, skip=skip,
                expand=expand, count=count, data=data, base_url=base_url,
                request_verification_token=request_verification_token,
                custom_headers=custom_headers, include_auth_context=include_auth_context
            )

        async def execute_webapi_call(
            operation: str,
            entity_set_name: Optional[str] = None,
            entity_id: Optional[str] = None,
            select: Optional[List[str]] = None,
            filter: Optional[str] = None,
            orderby: Optional[str] = None,
            top: Optional[int] = None,
            skip: Optional[int] = None,
            expand: Optional[str] = None,
            count: Optional[bool] = None,
            data: Optional[Dict[str, Any]] = None,
            prefer: Optional[List[str]] = None,
            if_match: Optional[str] = None,
            if_none_match: Optional[str] = None,
            caller_id: Optional[str] = None,
            relationship_name: Optional[str] = None,
            related_entity_set_name: Optional[str] = None,
            related_entity_id: Optional[str] = None,
            action_or_function_name: Optional[str] = None,
            parameters: Optional[Dict[str, Any]] = None,
            include_solution_context: bool = True,
        ) -> str:
            """Build a Dataverse Web API request exactly like generate_webapi_call and send it to the
            configured environment. Returns the JSON response. create and update require data;
            no sample body is ever sent."""
            return await bridge._guard(
                "Error executing WebAPI call", bridge._impl_execute_webapi_call,
                operation=operation, entity_set_name=entity_set_name, entity_id=entity_id,
                select=select, filter=filter, orderby=orderby, top=top, skip=skip,
                expand=expand, count=count, data=data, prefer=prefer, if_match=if_match,
                if_none_match=if_none_match, caller_id=caller_id,
                relationship_name=relationship_name, related_entity_set_name=related_entity_set_name,
                related_entity_id=related_entity_id, action_or_function_name=action_or_function_name,
                parameters=parameters, include_solution_context=include_solution_context
            )

        async def get_entity_info(entity_name: str) -> str:
            """Resolve a table by logical name or entity set name: entity set, primary columns,
            attributes and the lookup attribute to navigation property map."""
            return await bridge._guard(
                "Error resolving entity", bridge._impl_get_entity_info, entity_name=entity_name
            )

        async def set_solution_context(solution_unique_name: str) -> str:
            """Make a solution the active context. Metadata writes are tagged with it and generated
            requests carry the MSCRM.SolutionUniqueName header."""
            return await bridge._guard(
                "Error setting solution context", bridge._impl_set_solution_context,
                solution_unique_name=solution_unique_name
            )

        async def get_solution_context() -> str:
            """Show the active solution context, if any."""
            return await bridge._guard("Error reading solution context", bridge._impl_get_solution_context)

        async def clear_solution_context() -> str:
            """Clear the active solution context."""
            return await bridge._guard("Error clearing solution context", bridge._impl_clear_solution_context)

        self._register(generate_webapi_call, "generate_webapi_call")
        self._register(generate_powerpages_webapi_call, "generate_powerpages_webapi_call")
        self._register(execute_webapi_call, "execute_webapi_call")
        self._register(get_entity_info, "get_entity_info")
        self._register(set_solution_context, "set_solution_context")
        self._register(get_solution_context, "get_solution_context")
        self._register(clear_solution_context, "clear_solution_context")

    def _register_resources(self):
        bridge = self

        async def webapi_call(operation: str, entity_set_name: str, entity_id: Optional[str] = None) -> str:
            return await bridge._guard(
                "Error generating WebAPI call", bridge._impl_generate_webapi_call, error_type=ResourceError,
                operation=operation, entity_set_name=entity_set_name, entity_id=entity_id
            )

        async def webapi_examples(operation: str, entity_set_name: Optional[str] = None) -> str:
            return await bridge._guard(
                "Error generating WebAPI examples", bridge._impl_webapi_examples, error_type=ResourceError,
                operation=operation, entity_set_name=entity_set_name
            )

        async def powerpages_call(operation: str, entity_name: str, entity_id: Optional[str] = None) -> str:
            return await bridge._guard(
                "Error generating PowerPages WebAPI call", bridge._impl_generate_powerpages_webapi_call,
                error_type=ResourceError,
                operation=operation, logical_entity_name=entity_name, entity_id=entity_id
            )

        async def powerpages_examples(operation: str, entity_name: Optional[str] = None) -> str:
            return await bridge._guard(
                "Error generating PowerPages examples", bridge._impl_powerpages_examples, error_type=ResourceError,
                operation=operation, entity_name=entity_name
            )

        async def powerpages_auth_patterns() -> str:
            return f"# PowerPages Authentication Patterns\n\n{AUTH_CONTEXT_GUIDE}"

        call_description = "HTTP request, curl and JavaScript examples for a Dataverse Web API operation"
        self._register_resource(webapi_call, "webapi://{operation}/{entity_set_name}",
                                "webapi", call_description, "text/plain")
        self._register_resource(webapi_call, "webapi://{operation}/{entity_set_name}/{entity_id}",
                                "webapi-record", call_description, "text/plain")

        examples_description = "Common Dataverse Web API operation examples"
        self._register_resource(webapi_examples, "webapi-examples://{operation}",
                                "webapi-examples", examples_description, "text/markdown")
        self._register_resource(webapi_examples, "webapi-examples://{operation}/{entity_set_name}",
                                "webapi-examples-entity", examples_description, "text/markdown")

        portal_description = "Power Pages /_api request examples with a React component"
        self._register_resource(powerpages_call, "powerpages://{operation}/{entity_name}",
                                "powerpages", portal_description, "text/markdown")
        self._register_resource(powerpages_call, "powerpages://{operation}/{entity_name}/{entity_id}",
                                "powerpages-record", portal_description, "text/markdown")

        portal_examples_description = "Common Power Pages Web API patterns with authentication context"
        self._register_resource(powerpages_examples, "powerpages-examples://{operation}",
                                "powerpages-examples", portal_examples_description, "text/markdown")
        self._register_resource(powerpages_examples, "powerpages-examples://{operation}/{entity_name}",
                                "powerpages-examples-entity", portal_examples_description, "text/markdown")

        self._register_resource(powerpages_auth_patterns, "powerpages-auth://patterns", "powerpages-auth",
                                "Power Pages authentication and user context patterns", "text/markdown")

    def run(self, transport: str = "stdio", host: Optional[str] = None, port: Optional[int] = None):
        """Run the MCP server."""
        self._log_verbose(f"Starting Dataverse MCP bridge for environment: {self.client.dataverse_url}")
        self._log_verbose(f"MCP Server Name: {self.mcp.name}")
        if transport == "stdio":
            self.mcp.run()
        else:
            self._log_verbose(f"Starting {transport} transport on {host}:{port}")
            self.mcp.run(transport=transport, host=host, port=port)
