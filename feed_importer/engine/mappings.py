"""Lookup tables used by enrichment."""

from __future__ import annotations

# Monthly gross estimates keyed by a function-group substring.
SALARY_ESTIMATES: dict[str, tuple[int, int]] = {
    "Accounting": (3500, 5000),
    "Administratie": (2800, 3800),
    "Aankoop": (3400, 4800),
    "Bouw": (3000, 4300),
    "Engineering": (3800, 5500),
    "Finance": (3800, 5500),
    "HR": (3300, 4800),
    "ICT": (4000, 6000),
    "IT & Telecommunicatie": (4000, 6000),
    "Juridisch": (3800, 5600),
    "Logistiek": (2700, 3700),
    "Management": (4500, 6500),
    "Marketing": (3400, 5000),
    "Productie": (2600, 3600),
    "Sales": (3200, 4800),
    "Technisch": (3000, 4300),
    "Zorg": (2900, 4100),
}

DEFAULT_SALARY_TEXT = "€3000 - €4500"

PROVINCE_DOMAINS: dict[str, str] = {
    "antwerpen": "antwerpen.work",
    "brussel": "brussel.work",
    "bruxelles": "bruxelles.work",
    "henegouwen": "hainaut.work",
    "hainaut": "hainaut.work",
    "limburg": "limburg.work",
    "luik": "liege.work",
    "liège": "liege.work",
    "luxemburg": "luxembourg.work",
    "luxembourg": "luxembourg.work",
    "namen": "namur.work",
    "namur": "namur.work",
    "oost-vlaanderen": "oostvlaanderen.work",
    "vlaams-brabant": "vlaamsbrabant.work",
    "brabant wallon": "brabantwallon.work",
    "waals-brabant": "brabantwallon.work",
    "west-vlaanderen": "westvlaanderen.work",
}

SUPPORTED_LOCALES = ("en", "nl", "fr")

# label -> locale -> text
LABELS: dict[str, dict[str, str]] = {
    "estimate_prefix": {"nl": "Geschat ", "fr": "Estimé ", "en": "Est. "},
    "part_time": {"nl": "Deeltijds", "fr": "Temps partiel", "en": "Part-time"},
    "full_time": {"nl": "Voltijds", "fr": "Temps plein", "en": "Full-time"},
    "job": {"nl": "Vacature", "fr": "Emploi", "en": "Job"},
    "at": {"nl": " Bij ", "fr": " Chez ", "en": " At "},
    "company": {"nl": "bedrijf", "fr": "entreprise", "en": "company"},
    "benefits": {"nl": "Voordelen: ", "fr": "Avantages: ", "en": "Benefits: "},
    "salary": {"nl": "Salaris: ", "fr": "Salaire: ", "en": "Salary: "},
    "skills": {"nl": "Vaardigheden: ", "fr": "Compétences: ", "en": "Skills: "},
    "apply": {"nl": "Solliciteer nu!", "fr": "Postulez maintenant!", "en": "Apply now!"},
    "company_car": {"nl": "Bedrijfswagen", "fr": "Voiture de société", "en": "Company car"},
    "meal_vouchers": {"nl": "Maaltijdcheques", "fr": "Chèques repas", "en": "Meal vouchers"},
    "remote": {"nl": "Thuiswerk", "fr": "Télétravail", "en": "Remote work"},
    "flexible_hours": {"nl": "Flexibele uren", "fr": "Heures flexibles", "en": "Flexible hours"},
}


def label(name: str, locale: str) -> str:
    options = LABELS[name]
    return options.get(locale, options["en"])


def province_domain(province: str, fallback: str) -> str:
    return PROVINCE_DOMAINS.get(province.strip().lower(), fallback)


def salary_estimate_key(function_group: str) -> str | None:
    """Last table key contained in the function group, case-insensitively."""

    group = function_group.strip().lower()
    if not group:
        return None
    match = None
    for key in SALARY_ESTIMATES:
        if key.lower() in group:
            match = key
    return match


__all__ = [
    "DEFAULT_SALARY_TEXT",
    "LABELS",
    "PROVINCE_DOMAINS",
    "SALARY_ESTIMATES",
    "SUPPORTED_LOCALES",
    "label",
    "province_domain",
    "salary_estimate_key",
]
