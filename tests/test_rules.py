from leadpipe.common import current_year
from leadpipe.scrape import rules


def founded(text):
    result = rules.first_match(rules.FOUNDED_YEAR_RULES, text)
    return result[0] if result else None


def test_founded_in_year():
    assert founded("Founded in 1995, we have grown with our community.") == 1995


def test_founded_from_years_serving():
    assert founded("We have been proudly serving for 25 years.") == current_year() - 25


def test_founded_from_years_in_business():
    assert founded("With 30+ years in business, we know roofs.") == current_year() - 30


def test_out_of_range_year_falls_through_to_next_rule():
    text = f"Established in {current_year() + 5}. Celebrating our 10th anniversary this spring."
    assert founded(text) == current_year() - 10


def test_family_owned_since():
    assert founded("Family owned and operated since 1978.") == 1978


def test_founded_no_match():
    assert founded("We fix leaks fast.") is None
    assert founded("") is None


def test_implausible_year_counts_are_rejected():
    assert founded("Trusted for 250 years in business") is None


def test_owner_names():
    text = "Acme was founded in 1995 by John Carter. Mary Jones, Owner, answers every call."
    names, snippet = rules.owner_names(text)
    assert names == ["John Carter", "Mary Jones"]
    assert "John Carter" in snippet


def test_owner_names_rejects_non_people():
    assert rules.owner_names("Proudly owned and operated by Free Estimate") is None


def test_first_name_only_contacts():
    names, _ = rules.first_name_only_contacts("Need a quote? Ask for Raul or call Mike today. Call Us anytime.")
    assert names == ["Raul", "Mike"]


def test_classify_title():
    assert rules.classify_title("Owner") is True
    assert rules.classify_title("Founder & CEO") is True
    assert rules.classify_title("Office Manager") is False
    assert rules.classify_title("Great Guy") is None


def test_extract_team_members_longest_title_prefix():
    text = "Sarah Lopez, Office Manager keeps us organized. Mike Chen - Lead Technician since 2010."
    members = rules.extract_team_members(text, "https://acme.com/team")
    assert [(m.name, m.title, m.is_executive) for m in members] == [
        ("Sarah Lopez", "Office Manager", False),
        ("Mike Chen", "Lead Technician", False),
    ]
    assert all(m.source_url == "https://acme.com/team" for m in members)


def test_dedupe_team_members_prefers_executive():
    members = rules.extract_team_members("Jane Smith, Director of sales. Jane Smith, President.", "u")
    deduped = rules.dedupe_team_members(
        members + rules.extract_team_members("Jane Smith, President of the company.", "u")
    )
    assert len(deduped) == 1
    assert deduped[0].is_executive is True


def test_headcount_most_frequent_then_largest():
    text = "Our team of 12 technicians. 12 employees strong. Over 40 staff at peak season."
    assert rules.headcount(text)[0] == 12
    assert rules.headcount("We have 5 employees and 9 technicians")[0] == 9
    assert rules.headcount("1 employee") is None


def test_headcount_range():
    assert rules.headcount("A growing firm of 20-50 employees")[0] == 50


def test_services_split():
    items, snippet = rules.services("Our services include drain cleaning, water heater repair and leak detection.")
    assert items == ["drain cleaning", "water heater repair", "leak detection"]
    assert snippet.lower().startswith("our services include")


def test_commercial_rules():
    names, _ = rules.commercial_client_names("Clients include Riverside Property Management and City of Springfield.")
    assert names == ["Riverside Property Management", "City of Springfield"]
    assert rules.commercial_mentions("We serve property managers across Ohio")[0] is True
    assert rules.commercial_mentions("We love our residential neighbors") is None


def test_certifications_and_pricing():
    certs, _ = rules.certifications("Licensed, bonded and insured. NATE-certified technicians. BBB A+ Accredited.")
    assert "Licensed, bonded and insured" in certs
    assert "NATE-certified" in certs
    assert "BBB A+ Accredited" in certs

    pricing, _ = rules.pricing_signals("Free estimates and financing available. Drain cleaning starting at $99.")
    assert "Free estimates" in pricing
    assert "financing available" in pricing


def test_location_count_words_and_digits():
    assert rules.location_count("Visit one of our three convenient locations")[0] == 3
    assert rules.location_count("Now with 14 offices statewide")[0] == 14
    assert rules.location_count("Our location downtown") is None


def test_copyright_year_latest_valid():
    assert rules.copyright_year("© 2009-2021 Acme. Copyright 2019.")[0] == 2021
    assert rules.copyright_year("&copy; 2015 Acme")[0] == 2015
    assert rules.copyright_year("(c) 2999 Future Corp") is None


def test_testimonial_count():
    text = (
        '"They fixed our water heater the same day and cleaned up after." - Linda '
        '"Honest pricing and great communication from start to finish." - Tom '
        "★★★★★"
    )
    assert rules.testimonial_count(text)[0] == 3


def test_recurring_revenue_signals():
    signals, _ = rules.recurring_revenue_signals("Join our membership plan for annual maintenance visits.")
    assert signals == ["annual maintenance", "membership plan"]


def test_dedupe_is_case_insensitive():
    assert rules.dedupe(["Free Estimates", "free estimates", "Financing"]) == ["Free Estimates", "Financing"]
