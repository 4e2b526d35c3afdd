from chat_gateway.adapters import gemini, llama, openai
from chat_gateway.adapters.base import AdapterKind, WireAdapter

ADAPTERS: dict[AdapterKind, WireAdapter] = {
    AdapterKind.OPENAI: openai.ADAPTER,
    AdapterKind.GEMINI: gemini.ADAPTER,
    AdapterKind.LLAMA: llama.ADAPTER,
}


def select_adapter(model_id: str) -> AdapterKind:
    model = model_id.lower()
    if model.startswith("gemini"):
        return AdapterKind.GEMINI
    if "llama" in model or "local" in model:
        return AdapterKind.LLAMA
    return AdapterKind.OPENAI


def get_adapter(model_id: str) -> WireAdapter:
    return ADAPTERS[select_adapter(model_id)]
