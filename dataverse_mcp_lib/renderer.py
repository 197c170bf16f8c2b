"""
Renders WebAPIRequest objects as human-readable examples: a plain summary,
curl, JavaScript fetch, raw HTTP and a React component skeleton.
"""

import json
from typing import List, Optional, Tuple

from .bind_normalizer import extract_navigation_property_examples, has_odata_bind_properties
from .models import EntityInfo, WebAPIRequest

SCHEMA_FIELD_LIMIT = 10


def _compact_json(body) -> str:
    return json.dumps(body, separators=(',', ':'))


def _title(operation: str) -> str:
    return operation[:1].upper() + operation[1:]


def format_webapi_call(request: WebAPIRequest) -> str:
    lines = [f"HTTP Method: {request.method}", f"URL: {request.url}", "", "Headers:"]
    lines.extend(f"  {key}: {value}" for key, value in request.headers.items())
    text = '\n'.join(lines) + '\n'
    if request.body:
        text += f"\nRequest Body:\n{json.dumps(request.body, indent=2)}"
    return text


def render_curl(request: WebAPIRequest) -> str:
    parts = [f"curl -X {request.method}", f'"{request.url}"']
    parts.extend(f'-H "{key}: {value}"' for key, value in request.headers.items())
    if request.body:
        parts.append(f"-d '{_compact_json(request.body)}'")
    return ' \\\n  '.join(parts)


def render_fetch(request: WebAPIRequest, comment: Optional[str] = None) -> str:
    lines = []
    if comment:
        lines.append(f"// {comment}")
    lines.append(f"fetch('{request.url}', {{")
    lines.append(f"  method: '{request.method}',")
    headers = json.dumps(request.headers, indent=4)
    if request.body:
        lines.append(f"  headers: {headers},")
        lines.append(f"  body: JSON.stringify({json.dumps(request.body, indent=4)})")
    else:
        lines.append(f"  headers: {headers}")
    lines.append("})")
    lines.append("  .then(response => {")
    lines.append("    if (!response.ok) {")
    lines.append("      throw new Error(`HTTP error! status: ${response.status}`);")
    lines.append("    }")
    lines.append("    return response.json();")
    lines.append("  })")
    lines.append("  .then(data => console.log('Success:', data))")
    lines.append("  .catch(error => console.error('Error:', error));")
    return '\n'.join(lines)


def render_http_request(request: WebAPIRequest) -> str:
    lines = [f"{request.method} {request.url} HTTP/1.1", f"Host: {request.host}"]
    lines.extend(f"{key}: {value}" for key, value in request.headers.items())
    if request.body:
        lines.append('')
        lines.append(json.dumps(request.body, indent=2))
    return '\n'.join(lines)


def render_react_component(request: WebAPIRequest, entity_label: Optional[str] = None) -> str:
    """
    React component skeleton issuing the request.

    Retrieve operations load in useEffect; other operations are triggered
    from a button.
    """
    name = _title(request.operation)
    loads_on_mount = request.operation in ('retrieve', 'retrieveMultiple')
    fetch_options = {'method': request.method, 'headers': request.headers}
    if request.body:
        fetch_options['body'] = _compact_json(request.body)
    options = json.dumps(fetch_options, indent=2).replace('\n', '\n      ')

    lines = [
        "import React, { useState, useEffect } from 'react';",
        "",
        f"const {name}Component = () => {{",
        "  const [data, setData] = useState(null);",
        "  const [loading, setLoading] = useState(false);",
        "  const [error, setError] = useState(null);",
        "",
        f"  const perform{name} = async () => {{",
        "    setLoading(true);",
        "    setError(null);",
        "    try {",
        f"      const response = await fetch('{request.url}', {options});",
        "      if (!response.ok) {",
        "        throw new Error(`HTTP error! status: ${response.status}`);",
        "      }",
        "      setData(response.status === 204 ? {} : await response.json());",
        "    } catch (err) {",
        "      setError(err.message);",
        "    } finally {",
        "      setLoading(false);",
        "    }",
        "  };",
        "",
    ]
    if loads_on_mount:
        lines.extend([
            "  useEffect(() => {",
            f"    perform{name}();",
            "  }, []);",
            "",
        ])
    lines.extend([
        "  return (",
        "    <div>",
        f"      <h3>{name} {entity_label or 'Entity'}</h3>",
    ])
    if not loads_on_mount:
        lines.extend([
            f"      <button onClick={{perform{name}}} disabled={{loading}}>",
            f"        {{loading ? 'Processing...' : '{name}'}}",
            "      </button>",
        ])
    lines.extend([
        "      {loading && <p>Loading...</p>}",
        "      {error && <p style={{color: 'red'}}>Error: {error}</p>}",
        "      {data && (",
        "        <div>",
        "          <h4>Result:</h4>",
        "          <pre>{JSON.stringify(data, null, 2)}</pre>",
        "        </div>",
        "      )}",
        "    </div>",
        "  );",
        "};",
        "",
        f"export default {name}Component;",
    ])
    return '\n'.join(lines)


def render_bind_guide(request: WebAPIRequest) -> str:
    """@odata.bind notes for a request body, or an empty string when it has none."""
    if not has_odata_bind_properties(request.body):
        return ""
    prefix = request.api_path if request.api_path == '/_api' else ''
    lines = [
        "This request uses @odata.bind syntax for relationship management:",
        *extract_navigation_property_examples(request.body),
        "",
        "@odata.bind Syntax Guide:",
        f'- Associate on create/update: "navigationProperty@odata.bind": "{prefix}/entitysets(id)"',
        '- Disassociate: "navigationProperty@odata.bind": null',
        "- Single-valued navigation properties cover many-to-one relationships",
        "- Collection-valued navigation properties use /$ref endpoints instead",
        f'- Relative format: "{prefix}/accounts(id)" (the base URL is not used in @odata.bind)',
    ]
    return '\n'.join(lines)


def render_schema_summary(entity_info: Optional[EntityInfo]) -> str:
    if not entity_info or not entity_info.logical_name:
        return ""
    lines = [
        f"**Entity:** {entity_info.logical_name} ({entity_info.entity_set_name})",
        f"**Primary ID:** {entity_info.primary_id_attribute or 'Not available'}",
        f"**Primary Name:** {entity_info.primary_name_attribute or 'Not available'}",
        "",
        "### Available Fields:",
    ]
    if entity_info.attributes:
        for attr in entity_info.attributes[:SCHEMA_FIELD_LIMIT]:
            lines.append(f"- `{attr.logical_name}` ({attr.attribute_type})")
        remaining = len(entity_info.attributes) - SCHEMA_FIELD_LIMIT
        if remaining > 0:
            lines.append(f"- ... and {remaining} more fields")
    else:
        lines.append("Schema information not available")

    lines.extend(["", "### Lookup Navigation Properties:"])
    if entity_info.lookup_nav_map:
        lines.extend(f"- `{attr}` -> `{nav}`" for attr, nav in entity_info.lookup_nav_map.items())
    else:
        lines.append("No lookup relationships found")
    return '\n'.join(lines)


def render_webapi_report(request: WebAPIRequest, entity_info: Optional[EntityInfo] = None,
                         entity_set_name: Optional[str] = None, entity_id: Optional[str] = None) -> str:
    """Full text returned by the generate_webapi_call tool."""
    text = format_webapi_call(request)
    text += "\n\n--- Additional Information ---\n"
    text += f"Operation Type: {request.operation}\n"
    if entity_set_name:
        resolved = entity_info.entity_set_name if entity_info and entity_info.entity_set_name else None
        text += f"Entity Set: {entity_set_name}\n"
        text += f"Formatted Entity Set: {resolved or request.endpoint.split('(')[0].split('?')[0]}\n"
    if entity_id:
        text += f"Entity ID: {entity_id}\n"

    guide = render_bind_guide(request)
    if guide:
        text += f"\n--- @odata.bind Usage Detected ---\n{guide}\n"

    text += f"\nCurl Command:\n{render_curl(request)}\n"
    text += f"\nJavaScript Fetch Example:\n{render_fetch(request)}\n"
    return text


AUTH_CONTEXT_GUIDE = """PowerPages supports these access modes:

1. **Anonymous Access**: public data, no authentication
2. **Authenticated Users**: session-based authentication via portal login
3. **Request Verification Token**: anti-CSRF protection for state-changing operations

### Getting the Request Verification Token (JavaScript):
```javascript
const token = document.querySelector('input[name="__RequestVerificationToken"]')?.value ||
              document.querySelector('meta[name="__RequestVerificationToken"]')?.content;

// Send it on POST/PATCH/DELETE operations
headers['__RequestVerificationToken'] = token;
```

### User Context:
```javascript
const userContext = {
  isAuthenticated: window.Shell?.user?.isAuthenticated || false,
  userId: window.Shell?.user?.id,
  userName: window.Shell?.user?.displayName
};
```"""


def render_portal_report(request: WebAPIRequest, entity_info: Optional[EntityInfo] = None,
                         entity_label: Optional[str] = None, include_auth_context: bool = False) -> str:
    """Fenced markdown sections returned by the generate_powerpages_webapi_call tool."""
    sections: List[Tuple[str, str, str]] = [
        ("HTTP Request", "http", render_http_request(request)),
        ("cURL Command", "bash", render_curl(request)),
        ("JavaScript (Fetch API)", "javascript",
         render_fetch(request, comment=f"PowerPages WebAPI {request.operation} operation")),
        ("React Component", "jsx", render_react_component(request, entity_label)),
    ]

    guide = render_bind_guide(request)
    if guide:
        if entity_info and entity_info.lookup_nav_map:
            nav_lines = [f"- Lookup attribute `{attr}` -> navigation property `{nav}`"
                         for attr, nav in entity_info.lookup_nav_map.items()]
        else:
            nav_lines = ["- Navigation properties are resolved from the table schema"]
        guide += "\n\n### Navigation Property Names:\n" + '\n'.join(nav_lines)
        sections.append(("@odata.bind Relationships", "markdown", guide))

    if include_auth_context:
        sections.append(("Authentication Information", "markdown", AUTH_CONTEXT_GUIDE))

    schema = render_schema_summary(entity_info)
    if schema:
        sections.append(("Entity Schema", "markdown", schema))

    return '\n\n'.join(f"## {title}\n\n```{lang}\n{content}\n```" for title, lang, content in sections)
