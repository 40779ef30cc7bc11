"""Fixed records loaded into demo workspaces."""

from __future__ import annotations

import uuid

DEMO_WORKSPACE_NAME = "Apple"
DEMO_WORKSPACE_DOMAIN = "apple.dev"

# (email, first_name, last_name, role)
DEMO_USERS = (
    ("tim@apple.dev", "Tim", "Apple", "admin"),
    ("jony.ive@apple.dev", "Jony", "Ive", "member"),
    ("phil.schiler@apple.dev", "Phil", "Schiler", "member"),
)

# (name, domain_name, employees, address)
DEMO_COMPANIES = (
    ("Linkedin", "linkedin.com", 10000, "1000 W Maude Ave, Sunnyvale"),
    ("Facebook", "facebook.com", 70000, "1 Hacker Way, Menlo Park"),
    ("Qonto", "qonto.com", 1000, "18 rue de Navarin, Paris"),
    ("Microsoft", "microsoft.com", 220000, "1 Microsoft Way, Redmond"),
    ("Airbnb", "airbnb.com", 6000, "888 Brannan St, San Francisco"),
    ("Google", "google.com", 180000, "1600 Amphitheatre Pkwy, Mountain View"),
    ("Netflix", "netflix.com", 12000, "121 Albright Way, Los Gatos"),
    ("Algolia", "algolia.com", 700, "55 rue d'Amsterdam, Paris"),
)

# (first_name, last_name, email, city, company domain)
DEMO_PEOPLE = (
    ("Christoph", "Callisto", "christoph.calisto@linkedin.com", "Seattle", "linkedin.com"),
    ("Sylvie", "Palmer", "sylvie.palmer@linkedin.com", "Los Angeles", "linkedin.com"),
    ("Christopher", "Gonzalez", "christopher.gonzalez@qonto.com", "Seattle", "qonto.com"),
    ("Ashley", "Parker", "ashley.parker@qonto.com", "Los Angeles", "qonto.com"),
    ("Nicholas", "Wright", "nicholas.wright@microsoft.com", "Seattle", "microsoft.com"),
    ("Isabella", "Scott", "isabella.scott@microsoft.com", "New York", "microsoft.com"),
    ("Matthew", "Green", "matthew.green@microsoft.com", "Seattle", "microsoft.com"),
    ("Elizabeth", "Baker", "elizabeth.baker@airbnb.com", "New York", "airbnb.com"),
)


def demo_id(workspace_id: str, *parts: str) -> str:
    """Deterministic id so reseeding a workspace yields the same records."""
    return str(uuid.uuid5(uuid.UUID(str(workspace_id)), "demo:" + ":".join(parts)))
