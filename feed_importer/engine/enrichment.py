"""Derive presentation fields from a cleaned feed item.

Everything here is a pure function of the cleaned fields and the settings:
re-running enrichment on the same item always yields the same record, which
keeps content hashes stable between feed pulls.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlencode

from selectolax.lexbor import LexborHTMLParser

from ..config import NormalizeSettings
from . import mappings
from .cleaning import HTML_FIELDS
from .records import NormalizedRecord

BENEFIT_PATTERNS: dict[str, re.Pattern[str]] = {
    "company_car": re.compile(r"bedrijfs(?:wagen|auto)|firmawagen|voiture de société|company car", re.I),
    "remote": re.compile(r"thuiswerk|télétravail|remote work|home office", re.I),
    "meal_vouchers": re.compile(r"maaltijdcheques|chèques repas|meal vouchers", re.I),
    "flexible_hours": re.compile(r"flexibele uren|heures flexibles|flexible hours", re.I),
}
SKILL_PATTERNS: dict[str, re.Pattern[str]] = {
    "Excel": re.compile(r"\b(?:microsoft |ms )?excel\b", re.I),
    "WinBooks": re.compile(r"\bwinbooks\b", re.I),
}

# Fields consumed into typed attributes; the rest is kept in ``extra``.
_CONSUMED = {
    "guid", "functiontitle", "title", "description", "company", "location", "city",
    "province", "languagecode", "pubdate", "functiongroup", "applylink",
    "salaryfrom", "salaryto", "parttime",
}


def slugify(text: str) -> str:
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")


def plain_text(html: str) -> str:
    if not html:
        return ""
    tree = LexborHTMLParser(html)
    if tree.body is None:
        return ""
    return " ".join(tree.body.text(separator=" ").split())


def iso_date(value: str) -> str | None:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat()
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(value).isoformat()
    except (TypeError, ValueError):
        return None


def _amount(value: str) -> str:
    value = (value or "").strip()
    return "" if value in ("", "0") else value


class Enricher:
    """Turn cleaned raw fields into a :class:`NormalizedRecord`."""

    def __init__(self, settings: NormalizeSettings | None = None) -> None:
        self.settings = settings or NormalizeSettings()

    def enrich(self, fields: dict[str, str], feed_key: str = "") -> NormalizedRecord:
        identifier = fields.get("guid", "").strip()
        locale = self.locale_for(fields.get("languagecode", ""))
        title = fields.get("functiontitle") or fields.get("title", "")
        city = fields.get("city", "")
        province = fields.get("province", "")
        function_group = fields.get("functiongroup", "")

        enhanced_title = title
        if city:
            enhanced_title += f" in {city}"
        if province:
            enhanced_title += f", {province}"
        enhanced_title = enhanced_title.strip()

        domain = mappings.province_domain(province, self.settings.fallback_domain)
        slug = slugify(f"{enhanced_title}-{identifier}")
        estimate_key = mappings.salary_estimate_key(function_group)
        salary = self.salary_text(fields, locale, estimate_key)
        all_text = " ".join(
            [title] + [plain_text(fields.get(name, "")) for name in HTML_FIELDS]
        )
        benefits = {name: bool(pattern.search(all_text)) for name, pattern in BENEFIT_PATTERNS.items()}
        skills = [name for name, pattern in SKILL_PATTERNS.items() if pattern.search(all_text)]
        part_time = fields.get("parttime", "").strip().lower() == "true"
        employment_type = mappings.label("part_time" if part_time else "full_time", locale)
        summary = self.summary(fields, locale, enhanced_title, salary, benefits, skills)

        record = NormalizedRecord(
            identifier=identifier,
            title=title,
            enhanced_title=enhanced_title,
            description=fields.get("description", "") or fields.get("functiondescription", ""),
            company=fields.get("company", ""),
            location=fields.get("location", "") or city,
            city=city,
            province=province,
            locale=locale,
            feed=feed_key,
            published_at=fields.get("pubdate", ""),
            function_group=function_group,
            slug=slug,
            link=f"https://{domain}/job/{slug}",
            apply_link=self.apply_link(fields.get("applylink", ""), identifier),
            salary=salary,
            employment_type=employment_type,
            summary=summary,
            languages=self.languages(fields),
            skills=skills,
            benefits=benefits,
            extra={key: value for key, value in fields.items() if key not in _CONSUMED},
        )
        record.job_posting_schema = self.job_posting_schema(record, fields, domain, estimate_key)
        record.product_schema = self.product_schema(record, estimate_key)
        return record

    # ------------------------------------------------------------------
    def locale_for(self, language_code: str) -> str:
        code = (language_code or "").strip().lower()
        for locale in ("fr", "nl"):
            if code.startswith(locale):
                return locale
        return self.settings.default_locale

    def salary_text(self, fields: dict[str, str], locale: str, estimate_key: str | None) -> str:
        low = _amount(fields.get("salaryfrom", ""))
        high = _amount(fields.get("salaryto", ""))
        if low and high:
            return f"€{low} - €{high}"
        if low:
            return f"€{low}"
        if estimate_key:
            est_low, est_high = mappings.SALARY_ESTIMATES[estimate_key]
            return f"{mappings.label('estimate_prefix', locale)}€{est_low} - €{est_high}"
        return mappings.DEFAULT_SALARY_TEXT

    def apply_link(self, link: str, identifier: str) -> str:
        if not link:
            return ""
        separator = "&" if "?" in link else "?"
        query = urlencode({"utm_source": self.settings.utm_source, "utm_term": identifier})
        return f"{link}{separator}{query}"

    @staticmethod
    def languages(fields: dict[str, str]) -> list[str]:
        """Format ``language``/``languagelevel`` pairs (up to three) as ``Dutch: Fluent (4/5)``."""

        formatted: list[str] = []
        for index in (1, 2, 3):
            suffix = "" if index == 1 else str(index)
            name = fields.get(f"language{suffix}", "").strip()
            if not name:
                continue
            level = fields.get(f"languagelevel{suffix}", "")
            number, _, text = level.partition(" - ")
            formatted.append(f"{name}: {text.strip()} ({number.strip()}/5)")
        return formatted

    @staticmethod
    def summary(
        fields: dict[str, str],
        locale: str,
        enhanced_title: str,
        salary: str,
        benefits: dict[str, bool],
        skills: list[str],
    ) -> str:
        def text(name: str) -> str:
            return mappings.label(name, locale)

        company_text = plain_text(fields.get("companydescription", "")) or text("company")
        perks = [text(name) for name in ("company_car", "meal_vouchers", "remote", "flexible_hours") if benefits.get(name)]
        parts = [
            f"{text('job')}: {enhanced_title}.",
            plain_text(fields.get("functiondescription", "")),
            f"{text('at').strip()} {company_text}.",
        ]
        if perks:
            parts.append(f"{text('benefits')}{', '.join(perks)}.")
        parts.append(f"{text('salary')}{salary}.")
        if skills:
            parts.append(f"{text('skills')}{', '.join(skills)}.")
        parts.append(text("apply"))
        return " ".join(part for part in parts if part)

    @staticmethod
    def job_posting_schema(
        record: NormalizedRecord,
        fields: dict[str, str],
        domain: str,
        estimate_key: str | None,
    ) -> dict[str, Any]:
        remote = record.benefits.get("remote", False)
        schema: dict[str, Any] = {
            "@context": "https://schema.org",
            "@type": "JobPosting",
            "title": record.enhanced_title,
            "description": record.summary,
            "datePosted": iso_date(record.published_at),
            "validThrough": iso_date(fields.get("validtill", "")),
            "hiringOrganization": {
                "@type": "Organization",
                "name": record.company or plain_text(fields.get("companydescription", "")) or "Unknown",
            },
            "jobLocation": {
                "@type": "Place",
                "address": {
                    "@type": "PostalAddress",
                    "addressLocality": record.city,
                    "addressRegion": record.province,
                    "postalCode": fields.get("postalcode", ""),
                    "addressCountry": "BE",
                },
            },
            "employmentType": record.employment_type,
            "jobLocationType": "TELECOMMUTE" if remote else None,
            "applicantLocationRequirements": {"@type": "Country", "name": "Belgium"} if remote else None,
            "occupationalCategory": record.function_group,
            "baseSalary": None,
            "url": record.link or f"https://{domain}",
            "identifier": {"@type": "PropertyValue", "name": "GUID", "value": record.identifier},
        }
        if estimate_key:
            low, high = mappings.SALARY_ESTIMATES[estimate_key]
            schema["baseSalary"] = {
                "@type": "MonetaryAmount",
                "currency": "EUR",
                "value": {
                    "@type": "QuantitativeValue",
                    "minValue": low,
                    "maxValue": high,
                    "unitText": "MONTH",
                },
            }
        return schema

    @staticmethod
    def product_schema(record: NormalizedRecord, estimate_key: str | None) -> dict[str, Any]:
        offers = None
        if estimate_key:
            low, high = mappings.SALARY_ESTIMATES[estimate_key]
            offers = {
                "@type": "Offer",
                "priceCurrency": "EUR",
                "price": (low + high) / 2,
            }
        return {
            "@context": "https://schema.org",
            "@type": "Product",
            "name": record.enhanced_title,
            "description": record.summary,
            "category": record.function_group,
            "offers": offers,
        }


__all__ = ["BENEFIT_PATTERNS", "Enricher", "SKILL_PATTERNS", "iso_date", "plain_text", "slugify"]
