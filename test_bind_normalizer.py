#!/usr/bin/env python3
"""
Tests for @odata.bind key correction and value normalization.
"""

import unittest

from dataverse_mcp_lib.bind_normalizer import (
    extract_navigation_property_examples,
    has_odata_bind_properties,
    looks_like_entity_reference,
    normalize_bind_value,
    process_odata_bind_properties,
)
from dataverse_mcp_lib.models import Attribute, EntityInfo

GUID = "11111111-2222-3333-4444-555555555555"


def project_info():
    return EntityInfo(
        logical_name="cr123_project",
        entity_set_name="cr123_projectset",
        primary_id_attribute="cr123_projectid",
        primary_name_attribute="cr123_name",
        attributes=[
            Attribute(logical_name="cr123_name", attribute_type="String", is_primary_name=True),
            Attribute(logical_name="cr123_accountid", attribute_type="Lookup", targets=["account"]),
            Attribute(logical_name="cr123_ownerid", attribute_type="Lookup", targets=["systemuser"]),
        ],
        lookup_nav_map={"cr123_accountid": "cr123_AccountId", "cr123_ownerid": "cr123_OwnerId"},
    )


class TestNormalizeBindValue(unittest.TestCase):

    def test_absolute_urls_become_relative(self):
        cases = [
            (f"https://org.crm.dynamics.com/api/data/v9.2/accounts({GUID})", f"/accounts({GUID})"),
            (f"https://org.crm.dynamics.com/API/DATA/V9.2/accounts({GUID})", f"/accounts({GUID})"),
            (f"https://org.crm.dynamics.com/api/data/v9.1/accounts({GUID})", f"/accounts({GUID})"),
            ("https://example.com/no-entity-here", "https://example.com/no-entity-here"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(normalize_bind_value(value), expected)

    def test_relative_forms(self):
        cases = [
            (f"accounts({GUID})", f"/accounts({GUID})"),
            (f"/accounts({GUID})", f"/accounts({GUID})"),
            (f"/api/data/v9.2/accounts({GUID})", f"/accounts({GUID})"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(normalize_bind_value(value), expected)

    def test_non_strings_are_unchanged(self):
        for value in [None, "", 42, {"id": GUID}]:
            with self.subTest(value=value):
                self.assertEqual(normalize_bind_value(value), value)

    def test_idempotent(self):
        values = [
            f"https://org.crm.dynamics.com/api/data/v9.2/accounts({GUID})",
            f"accounts({GUID})",
            f"/accounts({GUID})",
            f"/api/data/v9.2/contacts({GUID})",
            "https://example.com/no-entity-here",
        ]
        for value in values:
            with self.subTest(value=value):
                once = normalize_bind_value(value)
                self.assertEqual(normalize_bind_value(once), once)

    def test_portal_prefix(self):
        cases = [
            (f"contacts({GUID})", f"/_api/contacts({GUID})"),
            (f"/contacts({GUID})", f"/_api/contacts({GUID})"),
            (f"/_api/contacts({GUID})", f"/_api/contacts({GUID})"),
            (f"https://site.powerappsportals.com/_api/contacts({GUID})", f"/_api/contacts({GUID})"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                result = normalize_bind_value(value, api_path="/_api", relative_prefix="/_api")
                self.assertEqual(result, expected)
                self.assertEqual(normalize_bind_value(result, api_path="/_api", relative_prefix="/_api"), result)


class TestProcessODataBindProperties(unittest.TestCase):

    def test_attribute_key_with_reference_becomes_navigation_bind(self):
        data = {"cr123_name": "Apollo", "cr123_accountid": f"accounts({GUID})"}
        result = process_odata_bind_properties(data, project_info())

        self.assertEqual(result, {"cr123_name": "Apollo", "cr123_AccountId@odata.bind": f"/accounts({GUID})"})
        bind_keys = [k for k in result if k.endswith("@odata.bind")]
        self.assertEqual(bind_keys, ["cr123_AccountId@odata.bind"])

    def test_misnamed_bind_key_is_corrected(self):
        data = {"cr123_accountid@odata.bind": f"https://org.crm.dynamics.com/api/data/v9.2/accounts({GUID})"}
        result = process_odata_bind_properties(data, project_info())

        self.assertEqual(result, {"cr123_AccountId@odata.bind": f"/accounts({GUID})"})

    def test_key_correction_is_case_insensitive(self):
        data = {"CR123_ACCOUNTID@odata.bind": f"/accounts({GUID})"}
        result = process_odata_bind_properties(data, project_info())

        self.assertEqual(result, {"cr123_AccountId@odata.bind": f"/accounts({GUID})"})

    def test_existing_navigation_key_wins(self):
        data = {
            "cr123_AccountId@odata.bind": f"/accounts({GUID})",
            "cr123_accountid@odata.bind": "/accounts(other)",
        }
        result = process_odata_bind_properties(data, project_info())

        self.assertEqual(result, {"cr123_AccountId@odata.bind": f"/accounts({GUID})"})

    def test_null_bind_value_is_preserved(self):
        data = {"cr123_AccountId@odata.bind": None, "cr123_ownerid@odata.bind": None}

        self.assertEqual(process_odata_bind_properties(data), data)
        self.assertEqual(process_odata_bind_properties(data, project_info()),
                         {"cr123_AccountId@odata.bind": None, "cr123_OwnerId@odata.bind": None})

    def test_null_bind_key_is_moved_to_navigation_property(self):
        result = process_odata_bind_properties({"cr123_accountid@odata.bind": None}, project_info())
        self.assertEqual(result, {"cr123_AccountId@odata.bind": None})

    def test_plain_lookup_key_not_upgraded_when_target_exists(self):
        data = {"cr123_AccountId@odata.bind": f"/accounts({GUID})", "cr123_accountid": "/accounts(other)"}
        result = process_odata_bind_properties(data, project_info())

        self.assertEqual(result, data)

    def test_non_reference_lookup_value_is_left_alone(self):
        data = {"cr123_accountid": 12345}
        self.assertEqual(process_odata_bind_properties(data, project_info()), data)

    def test_polymorphic_customer_column_is_not_upgraded(self):
        contact = EntityInfo(
            logical_name="contact",
            entity_set_name="contacts",
            primary_id_attribute="contactid",
            attributes=[Attribute(logical_name="parentcustomerid", attribute_type="Customer",
                                  targets=["account", "contact"])],
            lookup_nav_map={"parentcustomerid": "parentcustomerid_account"},
        )
        data = {"parentcustomerid": f"/contacts({GUID})"}

        self.assertEqual(process_odata_bind_properties(data, contact), data)

    def test_without_schema_only_values_are_normalized(self):
        data = {
            "cr123_accountid@odata.bind": f"https://org.crm.dynamics.com/api/data/v9.2/accounts({GUID})",
            "cr123_accountid": f"accounts({GUID})",
        }
        result = process_odata_bind_properties(data)

        self.assertEqual(result, {
            "cr123_accountid@odata.bind": f"/accounts({GUID})",
            "cr123_accountid": f"accounts({GUID})",
        })

    def test_input_is_not_mutated(self):
        data = {"cr123_accountid": f"accounts({GUID})"}
        process_odata_bind_properties(data, project_info())
        self.assertEqual(data, {"cr123_accountid": f"accounts({GUID})"})

    def test_non_dict_passthrough(self):
        for value in [None, [1, 2], "text"]:
            with self.subTest(value=value):
                self.assertEqual(process_odata_bind_properties(value, project_info()), value)

    def test_portal_flavour(self):
        data = {"cr123_accountid": f"accounts({GUID})"}
        result = process_odata_bind_properties(data, project_info(), api_path="/_api", relative_prefix="/_api")
        self.assertEqual(result, {"cr123_AccountId@odata.bind": f"/_api/accounts({GUID})"})


class TestBindHelpers(unittest.TestCase):

    def test_looks_like_entity_reference(self):
        self.assertTrue(looks_like_entity_reference(f"accounts({GUID})"))
        self.assertTrue(looks_like_entity_reference("/accounts(x)"))
        self.assertTrue(looks_like_entity_reference("https://org.crm.dynamics.com/api/data/v9.2/accounts(x)"))
        self.assertFalse(looks_like_entity_reference("Contoso Ltd"))
        self.assertFalse(looks_like_entity_reference(None))

    def test_has_odata_bind_properties(self):
        self.assertTrue(has_odata_bind_properties({"a@odata.bind": None}))
        self.assertFalse(has_odata_bind_properties({"name": "x"}))
        self.assertFalse(has_odata_bind_properties(None))

    def test_extract_navigation_property_examples(self):
        examples = extract_navigation_property_examples({
            "parentcustomerid_account@odata.bind": f"/accounts({GUID})",
            "cr123_OwnerId@odata.bind": None,
            "name": "ignored",
        })
        self.assertEqual(examples, [
            f'// Associate with parentcustomerid_account: "parentcustomerid_account@odata.bind": "/accounts({GUID})"',
            '// Disassociate relationship: "cr123_OwnerId@odata.bind": null',
        ])


if __name__ == "__main__":
    unittest.main()
