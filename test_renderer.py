#!/usr/bin/env python3
"""
Tests for the curl, fetch, raw HTTP and React example renderers.
"""

import json
import unittest

from dataverse_mcp_lib.models import Attribute, EntityInfo, WebAPIRequest
from dataverse_mcp_lib.renderer import (
    format_webapi_call,
    render_bind_guide,
    render_curl,
    render_fetch,
    render_http_request,
    render_portal_report,
    render_react_component,
    render_schema_summary,
    render_webapi_report,
)

BASE = "https://org.crm.dynamics.com"
HEADERS = {'Content-Type': 'application/json', 'Accept': 'application/json'}


def create_request(body=None):
    return WebAPIRequest(
        operation="create",
        method="POST",
        endpoint="accounts",
        headers=dict(HEADERS),
        body=body if body is not None else {"name": "Contoso", "primarycontactid@odata.bind": "/contacts(C)"},
        base_url=BASE,
        api_path="/api/data/v9.2",
    )


def list_request():
    return WebAPIRequest(
        operation="retrieveMultiple",
        method="GET",
        endpoint="contacts?$top=3",
        headers=dict(HEADERS),
        base_url="https://contoso.powerappsportals.com",
        api_path="/_api",
    )


def account_info(attribute_count=3):
    return EntityInfo(
        logical_name="account",
        entity_set_name="accounts",
        primary_id_attribute="accountid",
        primary_name_attribute="name",
        attributes=[Attribute(logical_name=f"field{i}", attribute_type="String") for i in range(attribute_count)],
        lookup_nav_map={"primarycontactid": "primarycontactid"},
    )


class TestBasicRenderers(unittest.TestCase):

    def test_format_webapi_call(self):
        text = format_webapi_call(create_request())

        self.assertTrue(text.startswith("HTTP Method: POST\nURL: https://org.crm.dynamics.com/api/data/v9.2/accounts\n"))
        self.assertIn("  Content-Type: application/json\n", text)
        body_json = text.split("Request Body:\n", 1)[1]
        self.assertEqual(json.loads(body_json)["name"], "Contoso")

    def test_format_without_body(self):
        self.assertNotIn("Request Body", format_webapi_call(list_request()))

    def test_curl(self):
        curl = render_curl(create_request())
        lines = curl.split(" \\\n  ")

        self.assertEqual(lines[0], "curl -X POST")
        self.assertEqual(lines[1], '"https://org.crm.dynamics.com/api/data/v9.2/accounts"')
        self.assertIn('-H "Accept: application/json"', lines)
        self.assertEqual(lines[-1], '-d \'{"name":"Contoso","primarycontactid@odata.bind":"/contacts(C)"}\'')

    def test_curl_without_body_has_no_trailing_continuation(self):
        curl = render_curl(list_request())
        self.assertFalse(curl.endswith("\\"))
        self.assertNotIn("-d ", curl)

    def test_fetch(self):
        snippet = render_fetch(create_request(), comment="create an account")

        self.assertTrue(snippet.startswith("// create an account\nfetch('https://org.crm.dynamics.com/api/data/v9.2/accounts', {"))
        self.assertIn("  method: 'POST',", snippet)
        self.assertIn("body: JSON.stringify(", snippet)
        self.assertNotIn("body:", render_fetch(list_request()))

    def test_http_request(self):
        text = render_http_request(list_request())
        lines = text.split("\n")

        self.assertEqual(lines[0], "GET https://contoso.powerappsportals.com/_api/contacts?$top=3 HTTP/1.1")
        self.assertEqual(lines[1], "Host: contoso.powerappsportals.com")
        self.assertNotIn("", lines)


class TestReactComponent(unittest.TestCase):

    def test_retrieve_loads_on_mount(self):
        code = render_react_component(list_request(), "contact")

        self.assertIn("const RetrieveMultipleComponent = () => {", code)
        self.assertIn("useEffect(() => {\n    performRetrieveMultiple();", code)
        self.assertNotIn("<button", code)
        self.assertIn("<h3>RetrieveMultiple contact</h3>", code)

    def test_writes_use_a_button(self):
        code = render_react_component(create_request())

        self.assertIn("<button onClick={performCreate} disabled={loading}>", code)
        self.assertNotIn("  useEffect(() => {", code)
        self.assertIn("<h3>Create Entity</h3>", code)
        self.assertTrue(code.endswith("export default CreateComponent;"))


class TestGuidesAndSchema(unittest.TestCase):

    def test_bind_guide(self):
        guide = render_bind_guide(create_request())
        self.assertIn('// Associate with primarycontactid: "primarycontactid@odata.bind": "/contacts(C)"', guide)
        self.assertIn('"/entitysets(id)"', guide)
        self.assertEqual(render_bind_guide(create_request(body={"name": "x"})), "")

    def test_schema_summary_truncates_fields(self):
        summary = render_schema_summary(account_info(attribute_count=12))

        self.assertIn("**Entity:** account (accounts)", summary)
        self.assertIn("- `field9` (String)", summary)
        self.assertNotIn("field10", summary)
        self.assertIn("- ... and 2 more fields", summary)
        self.assertIn("- `primarycontactid` -> `primarycontactid`", summary)

    def test_schema_summary_for_unresolved_entity(self):
        summary = render_schema_summary(EntityInfo(logical_name="widget", entity_set_name="widgets"))
        self.assertIn("Schema information not available", summary)
        self.assertIn("No lookup relationships found", summary)
        self.assertEqual(render_schema_summary(None), "")


class TestReports(unittest.TestCase):

    def test_webapi_report(self):
        report = render_webapi_report(create_request(), account_info(), entity_set_name="account")

        self.assertIn("--- Additional Information ---\nOperation Type: create\n", report)
        self.assertIn("Entity Set: account\nFormatted Entity Set: accounts\n", report)
        self.assertIn("--- @odata.bind Usage Detected ---", report)
        self.assertIn("\nCurl Command:\ncurl -X POST", report)
        self.assertIn("\nJavaScript Fetch Example:\nfetch(", report)

    def test_portal_report_sections(self):
        request = create_request()
        request = request.model_copy(update={"base_url": "https://contoso.powerappsportals.com", "api_path": "/_api"})
        report = render_portal_report(request, account_info(), entity_label="account", include_auth_context=True)

        titles = [line[3:] for line in report.split("\n") if line.startswith("## ")]
        self.assertEqual(titles, [
            "HTTP Request",
            "cURL Command",
            "JavaScript (Fetch API)",
            "React Component",
            "@odata.bind Relationships",
            "Authentication Information",
            "Entity Schema",
        ])
        self.assertIn("```jsx\nimport React", report)
        self.assertIn("```bash\ncurl -X POST", report)
        self.assertIn('"/_api/entitysets(id)"', report)

    def test_portal_report_minimal(self):
        report = render_portal_report(list_request())
        self.assertEqual(report.count("## "), 4)
        self.assertNotIn("Authentication Information", report)


if __name__ == "__main__":
    unittest.main()
