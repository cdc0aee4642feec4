"""Provider registry."""

from . import augment, claude, codex, copilot, cursor, gemini, jetbrains, minimax, zai

PROVIDERS = {
    m.DESCRIPTOR.id: m.DESCRIPTOR
    for m in (codex, claude, copilot, cursor, gemini, minimax, augment, zai, jetbrains)
}


def get_provider(provider_id: str):
    try:
        return PROVIDERS[provider_id]
    except KeyError:
        raise KeyError(f"unknown provider {provider_id!r}; "
                       f"known: {', '.join(PROVIDERS)}") from None


__all__ = ["PROVIDERS", "get_provider"]
