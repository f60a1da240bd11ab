"""
Localized strings used by the renderers (navigation labels, captions).

Languages missing from the table fall back to English.
"""

STRINGS = {
    "en": {
        "toc": "Contents",
        "chapter": "Chapter",
        "figure": "Figure",
        "previous": "Previous",
        "next": "Next",
        "cover": "Cover",
        "unresolved": "unresolved reference",
    },
    "fr": {
        "toc": "Table des matières",
        "chapter": "Chapitre",
        "figure": "Figure",
        "previous": "Précédent",
        "next": "Suivant",
        "cover": "Couverture",
        "unresolved": "référence introuvable",
    },
    "de": {
        "toc": "Inhalt",
        "chapter": "Kapitel",
        "figure": "Abbildung",
        "previous": "Zurück",
        "next": "Weiter",
        "cover": "Umschlag",
        "unresolved": "unbekannter Verweis",
    },
    "es": {
        "toc": "Índice",
        "chapter": "Capítulo",
        "figure": "Figura",
        "previous": "Anterior",
        "next": "Siguiente",
        "cover": "Portada",
        "unresolved": "referencia no encontrada",
    },
}

# polyglossia language names
TEX_LANGUAGES = {
    "en": "english",
    "fr": "french",
    "de": "german",
    "es": "spanish",
    "it": "italian",
    "pt": "portuguese",
    "nl": "dutch",
}


def primary_subtag(lang):
    return (lang or "en").split("-")[0].lower()


def strings(lang):
    return STRINGS.get(primary_subtag(lang), STRINGS["en"])


def tex_language(lang):
    return TEX_LANGUAGES.get(primary_subtag(lang), "english")
