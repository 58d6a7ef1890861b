from agent_turn_pipeline.extraction.grammars import (
    DelimiterJsonGrammar,
    FencedJsonGrammar,
    Grammar,
    GrammarMatch,
    HeuristicDocumentGrammar,
    MarkerBlockGrammar,
)
from agent_turn_pipeline.extraction.parser import (
    ExtractionParser,
    ExtractionResult,
    PayloadBuilder,
    analysis_builder,
    model_builder,
)
from agent_turn_pipeline.extraction.payloads import dump_payload, load_payload

__all__ = [
    "DelimiterJsonGrammar",
    "ExtractionParser",
    "ExtractionResult",
    "FencedJsonGrammar",
    "Grammar",
    "GrammarMatch",
    "HeuristicDocumentGrammar",
    "MarkerBlockGrammar",
    "PayloadBuilder",
    "analysis_builder",
    "dump_payload",
    "load_payload",
    "model_builder",
]
