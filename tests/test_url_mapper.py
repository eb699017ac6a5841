"""Tests for URL mapping and dynamic route cleaning."""

import pytest

from emr_assistant.services.url_mapper import (
    UrlMapper,
    clean_dynamic_url,
    determine_page_type,
    extract_action_keywords,
    get_base_path,
    get_navigation_context,
)

BASE_URL = "https://clinic.example.com"


@pytest.mark.parametrize("url,expected", [
    ("/appointments/123/manage", "/appointments"),
    ("/appointments/{id}/manage", "/appointments"),
    ("/appointments/[appointment_id]/manage-appointment", "/appointments"),
    ("/patients/[patient]/edit", "/patients"),
    ("/practitioners/42", "/settings/practitioners/list"),
    ("/widgets/{id}/foo", "/widgets"),
    ("/patients/create", "/patients/create"),
    ("/practitioners/create", "/practitioners/create"),
    ("/settings//locations/", "/settings/locations"),
    ("/", "/"),
    ("{id}", "/"),
    ("/[id]/edit", "/"),
])
def test_clean_dynamic_url(url, expected):
    """Parent-route table first, then first-segment fallback, then tidy-up."""
    assert clean_dynamic_url(url) == expected


@pytest.mark.parametrize("url,expected", [
    ("/patients/create", "create"),
    ("/patients/{id}/edit", "edit"),
    ("/appointments/{id}/manage", "manage"),
    ("/patients/{id}/invite", "invite"),
    ("/invoices/17", "show"),
    ("/settings/invitations", "invitations"),
    ("/patients", "index"),
    ("/settings/practitioners/list", None),
])
def test_determine_page_type(url, expected):
    assert determine_page_type(url) == expected


def test_base_path_and_navigation_hint():
    assert get_base_path("/patients/{id}/edit") == "patient"
    assert get_base_path("/gadgets/{id}") == "gadgets"
    assert get_navigation_context("/patients/{id}/edit") == "Go to patient list, select an item, then click Edit"
    assert get_navigation_context("/appointments/{id}/manage") == "Go to appointment list, select an item, then click Manage"
    assert "Start Session" in get_navigation_context("/appointments/{id}/session")
    assert get_navigation_context("/invoices/{invoice}") == "Go to invoice list, then select an item to view details"


def test_extract_action_keywords():
    assert extract_action_keywords("Register a new patient", "Create Patient") == ["create", "add"]
    assert extract_action_keywords("Manage staff and invite colleagues", "") == ["manage", "invite"]
    assert extract_action_keywords("", "") == []


def test_absolute_url():
    mapper = UrlMapper(BASE_URL + "/")
    assert mapper.absolute_url("/patients") == f"{BASE_URL}/patients"
    assert mapper.absolute_url("patients") == f"{BASE_URL}/patients"
    assert mapper.absolute_url("https://other.example.com/x") == "https://other.example.com/x"
    assert mapper.absolute_url("") == ""


def test_build_url_map_from_embedded_json(sample_knowledge):
    """Page titles, actions and navigation labels all map to absolute URLs."""
    url_map = UrlMapper(BASE_URL).build_url_map(sample_knowledge)

    assert url_map["Add Practitioner"] == f"{BASE_URL}/practitioners/create"
    assert url_map["Add Practitioner (create)"] == f"{BASE_URL}/practitioners/create"
    assert url_map["practitioners create"] == f"{BASE_URL}/practitioners/create"
    assert url_map["Create appointment"] == f"{BASE_URL}/appointments/create"
    assert url_map["Appointments page"] == f"{BASE_URL}/appointments/create"
    assert url_map["Invite patient"] == f"{BASE_URL}/patients"
    assert url_map["Dashboard"] == f"{BASE_URL}/dashboard"
    assert url_map["Patient Intake"] == f"{BASE_URL}/intake"
    assert url_map["add patient"] == f"{BASE_URL}/patients"


def test_dynamic_route_gets_navigation_hint(sample_knowledge):
    url_map = UrlMapper(BASE_URL).build_url_map(sample_knowledge)

    assert url_map["Manage Appointment"] == f"{BASE_URL}/appointments"
    assert url_map["Manage Appointment (navigate via)"] == (
        f"{BASE_URL}/appointments → Go to appointment list, select an item, then click Manage"
    )
    assert all("{" not in url for url in url_map.values())


def test_no_json_means_no_map():
    assert UrlMapper(BASE_URL).build_url_map("just prose") == {}
    assert UrlMapper(BASE_URL).build_url_map("") == {}


def test_regex_fallback_for_broken_json():
    """A truncated object still yields the URLs it mentions."""
    document = '{"x": {"knowledge": {"where_to_do_what": [{"action": "Add patient", "url": "/patients/create"}, {"url": "/patients/{id}/edit"'
    url_map = UrlMapper(BASE_URL).build_url_map(document)

    assert url_map["Add patient"] == f"{BASE_URL}/patients/create"
    assert url_map["/patients/create"] == f"{BASE_URL}/patients/create"
    assert url_map["/patients/{id}/edit"] == f"{BASE_URL}/patients"
