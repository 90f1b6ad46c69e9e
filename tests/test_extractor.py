# tests/test_extractor.py
import pytest

from modules.job_harvest.lib import extractor
from modules.job_harvest.lib.errors import ChallengePresent, NoTitle
from modules.job_harvest.lib.extractor import KnownLiterals, clean_description, clean_title, extract


# ----------------------------------------------------------------------
# Full posting page
# ----------------------------------------------------------------------
def test_extract_full_posting(pages):
    page = pages.sample()
    job = extract(page.text, title=page.title, url=page.url)

    assert job.title == "Sales Executive"
    assert job.posting_id == "58123456"
    assert job.salary == "4500"
    assert job.email == "hr.riyadh@example.com"
    assert job.location == "Riyadh"
    assert job.category == "Sales, Marketing Jobs"
    assert job.posted_date == "Tue, Jul 1, 2025"
    assert job.employment_type == "full-time"
    assert job.company == ""
    assert job.contact_info == "0551234567, +966551234567"
    assert job.requirements.startswith("Valid and transferable Iqama")
    assert job.benefits.startswith("Competitive fixed salary")
    assert job.is_sponsored is False
    assert job.url == page.url


def test_description_is_the_body_between_contact_button_and_footer(pages):
    page = pages.sample()
    job = extract(page.text, title=page.title, url=page.url)

    assert job.description.startswith("Hiring Sales Executive")
    assert "\n\nRequirements:\n" in job.description
    assert "\n\nWhat We Offer:\n" in job.description
    assert "Email to a Friend" not in job.description
    assert "Posting ID" not in job.description


# ----------------------------------------------------------------------
# Field independence
# ----------------------------------------------------------------------
def test_missing_fields_are_empty_strings_and_independent():
    text = "Accountant wanted\nSalary 3000 SAR monthly"
    job = extract(text, title="Jeddah Jobs, Accountant, 58000001 - expatriates.com", url="https://x/cls/58000001.html")

    assert job.title == "Accountant"
    assert job.salary == "3000"
    assert job.email == ""
    assert job.location == ""
    assert job.contact_info == ""
    assert job.requirements == ""
    assert job.posting_id == "58000001"  # from URL when no label


def test_site_email_is_rejected():
    text = "Driver needed\nFrom: noreply@expatriates.com\nEmail: jobs@acme-trading.com"
    job = extract(text, title="Driver", url="")
    assert job.email == "jobs@acme-trading.com"


def test_location_bracket_form():
    job = extract("Cook needed\nLocation: [Dammam]", title="Cook")
    assert job.location == "Dammam"


def test_salary_in_riyal_suffix_form():
    job = extract("Nurse vacancy, package 6500 SR plus housing", title="Nurse")
    assert job.salary == "6500"


# ----------------------------------------------------------------------
# Contacts and literals
# ----------------------------------------------------------------------
def test_contacts_deduplicated_in_first_seen_order():
    text = "Call 0501112222 or 0501112222, office 0112223333, intl +966501112222"
    assert extractor.extract_contacts(text) == "0501112222, 0112223333, +966501112222"


def test_known_literals_win_over_patterns():
    text = "Salary: 1800\nbasic 2300 plus overtime\nWhatsApp 0559998888"
    lits = KnownLiterals(salary=("2300",), contact=("WhatsApp 0559998888",))
    job = extract(text, title="Helper", literals=lits)

    assert job.salary == "2300"
    assert job.contact_info.split(", ")[0] == "WhatsApp 0559998888"
    assert "0559998888" in job.contact_info


def test_known_literals_ignored_when_absent():
    lits = KnownLiterals(salary=("9999",))
    job = extract("Salary: 1800", title="Helper", literals=lits)
    assert job.salary == "1800"


def test_known_literals_from_mapping():
    lits = KnownLiterals.from_mapping({"salary": [2300], "contact": ["0500000000"]})
    assert lits.salary == ("2300",)
    assert lits.contact == ("0500000000",)
    assert KnownLiterals.from_mapping(None) == KnownLiterals()


# ----------------------------------------------------------------------
# Title
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Riyadh Jobs, Accountant Needed, 58123456 - expatriates.com", "Accountant Needed"),
        ("Accountant Needed - Expatriates.com Saudi Arabia", "Accountant Needed"),
        ("Plain Title", "Plain Title"),
        ("", ""),
    ],
)
def test_clean_title(raw, expected):
    assert clean_title(raw) == expected


def test_title_falls_back_to_first_reasonable_content_line():
    text = "Hi\nExperienced Electrician Required\nmore text"
    job = extract(text, title=" - expatriates.com")
    assert job.title == "Experienced Electrician Required"


def test_no_title_raises():
    with pytest.raises(NoTitle):
        extract("ok\nno", title="")


# ----------------------------------------------------------------------
# Challenge pages
# ----------------------------------------------------------------------
def test_challenge_text_is_never_a_record(pages):
    page = pages.challenge("https://www.expatriates.com/cls/58000002.html")
    with pytest.raises(ChallengePresent):
        extract(page.text, title=page.title, url=page.url)


def test_long_single_line_fields_are_bounded():
    text = "\n".join([
        "Location: " + "x" * 5000,
        "Category: " + "c" * 4000,
        "Posted: " + "p" * 900,
        "Company: " + "k" * 100,
    ])
    job = extract(text, title="Cook " + "t" * 1000)

    assert len(job.location) == extractor.FIELD_LIMITS["location"]
    assert job.location.endswith("...")
    assert len(job.category) == extractor.FIELD_LIMITS["category"]
    assert len(job.posted_date) == extractor.FIELD_LIMITS["posted_date"]
    assert len(job.title) == extractor.FIELD_LIMITS["title"]
    assert job.title.startswith("Cook t")
    assert job.company == "k" * 100


# ----------------------------------------------------------------------
# Description cleanup
# ----------------------------------------------------------------------
def test_description_truncates_at_line_break_with_marker():
    para = "Line of description text that is reasonably long.\n"
    raw = para * 40  # ~2000 chars
    out = clean_description(raw)

    assert out.endswith("[...description continues...]")
    assert len(out) <= 1500 + len(extractor.DESCRIPTION_CONTINUES)


def test_description_truncates_hard_without_late_line_break():
    raw = "x" * 2000
    out = clean_description(raw)
    assert out == "x" * 1500 + "..."


def test_description_strips_ad_noise_and_collapses_blank_lines():
    raw = "Hiring now (adsbygoogle = window.adsbygoogle || []).push({});\n\n\n\nApply today"
    out = clean_description(raw)
    assert "adsbygoogle" not in out
    assert "\n\n\n" not in out
    assert out.startswith("Hiring now")


def test_description_fallback_without_contact_button():
    text = (
        "Posting ID: 58000003\n"
        "We are looking for an experienced HVAC technician to join a maintenance team in Khobar.\n"
        "Back"
    )
    job = extract(text, title="HVAC Technician")
    assert job.description.startswith("We are looking for an experienced HVAC technician")
    assert "Back" not in job.description
