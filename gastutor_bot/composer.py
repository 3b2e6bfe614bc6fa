from __future__ import annotations

import logging
from typing import List

from .content import ContentCatalog, catalog, level_description
from .models import ExactAnswerResult, Level, NoMatch, ResolutionResult, Unit, UnitsResult
from .resolver import TopicResolver, resolver

logger = logging.getLogger(__name__)

DEFAULT_UPGRADE_URL = "https://buy.stripe.com/5kQeVefxX2VmbCS0tO7ok05"
MAX_EXPANDED_UNITS = 3
MAX_LISTED_UNITS = 6


def upsell_footer(upgrade_url: str = DEFAULT_UPGRADE_URL) -> str:
    return (
        "---\n\n"
        "**This is free CSA training content.** For detailed explanations, interactive Q&A, "
        "and personalized tutoring, upgrade to AI Tutor Pro.\n\n"
        f"[**Upgrade to Pro - $9.99/month**]({upgrade_url}) for:\n"
        "• AI-powered explanations of complex topics\n"
        "• Interactive problem-solving guidance\n"
        "• Personalized study recommendations\n"
        "• Code compliance assistance"
    )


def unit_content(unit_number: int, title: str, query: str) -> str:
    lowered = query.lower()
    if unit_number == 1:
        return (
            "**Key Safety Topics:**\n"
            "• Personal protective equipment (PPE)\n"
            "• Hazard identification and risk assessment\n"
            "• Safe work practices for gas installations\n"
            "• Emergency procedures and leak response\n"
            "• CSA B149.1 safety requirements"
        )
    if unit_number == 2:
        return (
            "**Tools and Testing Equipment:**\n"
            "• Manometers for pressure testing\n"
            "• Electronic gas detectors\n"
            "• Pipe threading and cutting tools\n"
            "• Testing procedures and documentation\n"
            "• Calibration requirements"
        )
    if unit_number == 3:
        return (
            "**Natural Gas Properties:**\n"
            "• Specific gravity and heating value\n"
            "• Combustion characteristics\n"
            "• Gas composition and quality standards\n"
            "• Safe handling and storage procedures\n"
            "• Detection and leak response"
        )
    if unit_number == 4:
        return (
            "**CSA B149.1-25 Code References:**\n"
            "• Installation requirements\n"
            "• Clearance specifications\n"
            "• Pressure testing procedures\n"
            "• Documentation and permits\n"
            "• Compliance verification"
        )
    if unit_number == 8:
        if "sizing" in lowered or "pressure" in lowered:
            return (
                "**Piping System Design:**\n"
                "• Pipe sizing calculations\n"
                "• Pressure drop considerations\n"
                "• Material specifications (black iron, CSST, PE)\n"
                "• Installation methods and supports\n"
                "• Testing and commissioning"
            )
        return (
            "**Piping and Tubing Systems:**\n"
            "• Material types and specifications\n"
            "• Installation methods and techniques\n"
            "• Support and protection requirements\n"
            "• Testing and inspection procedures\n"
            "• Code compliance requirements"
        )
    if unit_number == 9:
        return (
            "**Gas Appliance Basics:**\n"
            "• Appliance categories and classifications\n"
            "• Installation requirements\n"
            "• Venting and combustion air\n"
            "• Controls and safety devices\n"
            "• Maintenance and troubleshooting"
        )
    if unit_number == 11:
        return (
            "**Pressure Regulation:**\n"
            "• Regulator types and applications\n"
            "• Installation and adjustment procedures\n"
            "• Testing and maintenance requirements\n"
            "• Troubleshooting common issues\n"
            "• Code compliance standards"
        )
    if unit_number == 18:
        return (
            "**Gas Water Heaters:**\n"
            "• Installation requirements\n"
            "• Venting specifications\n"
            "• Temperature and pressure relief\n"
            "• Controls and safety devices\n"
            "• Maintenance procedures"
        )
    if unit_number == 22:
        return (
            "**Venting Systems:**\n"
            "• Vent categories and classifications\n"
            "• Sizing and installation requirements\n"
            "• Clearance specifications\n"
            "• Inspection and testing procedures\n"
            "• Troubleshooting vent problems"
        )
    return (
        f"**{title} Overview:**\n"
        "• CSA B149.1-25 compliance requirements\n"
        "• Installation and safety procedures\n"
        "• Code references and specifications\n"
        "• Best practices and common applications\n"
        "• Testing and documentation requirements"
    )


class AnswerComposer:
    def __init__(self, content: ContentCatalog = catalog, upgrade_url: str = DEFAULT_UPGRADE_URL) -> None:
        self._catalog = content
        self.upgrade_url = upgrade_url
        self._footer = upsell_footer(upgrade_url)

    def compose(self, result: ResolutionResult, query: str, level: Level) -> str:
        if isinstance(result, ExactAnswerResult):
            return f"{result.text}\n\n{self._footer}"
        if isinstance(result, UnitsResult) and result.units:
            return self._compose_units(list(result.units), query)
        return self._compose_general(level)

    def _compose_units(self, units: List[Unit], query: str) -> str:
        plural = "s" if len(units) > 1 else ""
        parts = [
            "## CSA Training Content Related to Your Query\n\n",
            f"Found **{len(units)}** relevant training unit{plural}:\n\n",
        ]
        for unit in units[:MAX_EXPANDED_UNITS]:
            parts.append(f"### Unit {unit.number}: {unit.title}\n\n")
            parts.append(unit_content(unit.number, unit.title, query))
            parts.append("\n\n")
        hidden = len(units) - MAX_EXPANDED_UNITS
        if hidden > 0:
            parts.append(f"_+{hidden} more related unit{'s' if hidden > 1 else ''} not shown._\n\n")
        parts.append(self._footer)
        return "".join(parts)

    def _compose_general(self, level: Level) -> str:
        units = self._catalog.units_for_level(level)
        lines = [
            "## CSA Training Content Related to Your Query\n",
            f"**General {level.value} Training Information:**\n",
            level_description(level),
            "",
            "**Available Study Units:**",
        ]
        for unit in units[:MAX_LISTED_UNITS]:
            lines.append(f"• **Unit {unit.number}**: {unit.title}")
        if len(units) > MAX_LISTED_UNITS:
            lines.append(f"• ... and {len(units) - MAX_LISTED_UNITS} more units")
        lines.append("")
        lines.append(self._footer)
        return "\n".join(lines)


def search_fallback(text: str, upgrade_url: str = DEFAULT_UPGRADE_URL) -> str:
    return (
        "**CSA Training Content Search**\n\n"
        "I'm searching our CSA B149.1-25 training database for information related to: "
        f'"*{text}*"\n\n'
        "This free version provides access to all CSA training materials and study guides. "
        "For AI-powered explanations and interactive tutoring, upgrade to Pro.\n\n"
        f"[**Upgrade to Pro - $9.99/month**]({upgrade_url})"
    )


composer = AnswerComposer()


def ask_question(
    text: str,
    level: Level,
    topic_resolver: TopicResolver = resolver,
    answer_composer: AnswerComposer = composer,
) -> str:
    """Answer one free-text question. Never raises."""
    query = text or ""
    try:
        if not query.strip():
            return answer_composer.compose(NoMatch(), query, level)
        result = topic_resolver.resolve(query, level)
        return answer_composer.compose(result, query, level)
    except Exception:
        logger.exception("Could not compose an answer for level %s", level)
        return search_fallback(query, answer_composer.upgrade_url)
