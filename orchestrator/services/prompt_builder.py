"""Assembles the per-turn system prompt for the tool-calling LLM."""

from __future__ import annotations

from orchestrator.models import DateContext, RAGContext, Scenario, SlotSet
from orchestrator.prompts import SCENARIO_PROMPTS, SYSTEM_PROMPT
from orchestrator.services.reference_data import ReferenceDataCache
from orchestrator.services.response_synthesizer import format_options

_MAX_FAQ_ENTRIES = 3


def build_system_prompt(
    *,
    scenario: Scenario,
    slots: SlotSet,
    date_context: DateContext,
    reference: ReferenceDataCache | None = None,
    rag_context: RAGContext | None = None,
    validation_summary: str = "",
) -> str:
    sections = [SYSTEM_PROMPT.strip()]

    today = f"## Today\nToday is {date_context.date} ({date_context.day_of_week})"
    if date_context.time:
        today += f", {date_context.time}"
    today += "."
    if date_context.degraded:
        today += " (Local clock; the clinic's calendar could not be reached.)"
    sections.append(today)

    if reference is not None:
        procedures = reference.procedures()
        units = reference.units()
        if procedures:
            sections.append("## Procedures offered\n" + format_options("procedure", procedures))
        if units:
            sections.append("## Units\n" + format_options("unit", units))

    if validation_summary:
        sections.append("## Validation results\n" + validation_summary)

    sections.append(f"## Current situation ({scenario.value})\n{SCENARIO_PROMPTS[scenario]}")

    known = slots.known()
    if known:
        lines = "\n".join(f"- {field}: {value}" for field, value in known.items())
        sections.append(f"## Already collected (do NOT ask again)\n{lines}")
    missing = slots.missing()
    if missing:
        sections.append("## Still missing\n" + ", ".join(missing))

    if rag_context is not None:
        history = rag_context.patient_history
        if history and history.entries:
            prefs = []
            if history.preferred_unit:
                prefs.append(f"usual unit: {history.preferred_unit}")
            if history.preferred_time:
                prefs.append(f"usual time: around {history.preferred_time}")
            if history.procedures:
                prefs.append("past procedures: " + ", ".join(history.procedures))
            if prefs:
                sections.append(
                    "## Returning patient (suggest, never assume)\n- " + "\n- ".join(prefs)
                )
        if rag_context.faq_results:
            faq = "\n\n".join(
                f"Q: {m.question}\nA: {m.answer}"
                for m in rag_context.faq_results[:_MAX_FAQ_ENTRIES]
            )
            sections.append("## Relevant FAQ entries\n" + faq)

    return "\n\n".join(sections)
