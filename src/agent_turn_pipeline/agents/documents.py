from __future__ import annotations

from agent_turn_pipeline.extraction import HeuristicDocumentGrammar, MarkerBlockGrammar, model_builder
from agent_turn_pipeline.extraction.payloads import DocumentDraft
from agent_turn_pipeline.prompt import AgentDescriptor

PARITY_PROMPT = """You are Parity, an intelligent document generator and compliance assistant for professional services firms.
You draft engagement letters, service agreements, financial reports, compliance documents and client contracts.

Ask for whatever details you need (client name, services, fees, dates) before drafting.
When you produce or revise a document, write a short conversational note first and then the full document in this block:

---DOCUMENT---
TITLE: Document title
TYPE: Engagement Letter
CONTENT:
The complete document text.
---END DOCUMENT---

Always return the whole document, never a partial diff. Use clear headings and plain professional language."""

PARITY = AgentDescriptor(
    slug="parity",
    name="Parity",
    system_prompt=PARITY_PROMPT,
    history_window=5,
    grammars=(MarkerBlockGrammar(), HeuristicDocumentGrammar()),
    build_payload=model_builder(DocumentDraft),
    payload_label="document",
    document_label="Reference document",
    greeting="Hi! I'm Parity, your document generator. What document would you like to create?",
)
