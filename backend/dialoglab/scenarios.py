from __future__ import annotations

from typing import Dict, List, Tuple


DEFAULT_SCENARIO = "restaurant"
DEFAULT_LEVEL = "A2"

LEVELS: List[str] = ["A1", "A2", "B1"]

LEVEL_GUIDES: Dict[str, str] = {
    "A1": "Use very simple words and short sentences. Speak slowly. Help with basic vocabulary.",
    "A2": "Use simple everyday language. Keep sentences clear and not too long.",
    "B1": "Use intermediate vocabulary. You can use more complex sentences, but keep it conversational.",
}

_CLOSING = "Be encouraging and patient. Speak only English."
_NATURAL = "Keep responses conversational and natural."
_CORRECT = "Correct mistakes gently by rephrasing correctly."

# Role description per scenario; level guidance is inserted after it.
ROLES: Dict[str, Tuple[str, str]] = {
    "restaurant": (
        "You are a friendly waiter in an English restaurant. Help the student practice ordering food.",
        f"{_CLOSING} {_NATURAL} {_CORRECT}",
    ),
    "shopping": (
        "You are a helpful shop assistant in an English store. Help the student practice shopping conversations.",
        f"{_CLOSING} {_NATURAL} {_CORRECT}",
    ),
    "airport": (
        "You are a friendly airport staff member. Help the student practice airport conversations like check-in, security, and finding gates.",
        f"{_CLOSING} {_NATURAL} {_CORRECT}",
    ),
    "doctor": (
        "You are a caring doctor in an English clinic. Help the student practice describing symptoms and medical conversations.",
        f"{_CLOSING} {_NATURAL} {_CORRECT}",
    ),
    "hotel": (
        "You are a friendly hotel receptionist. Help the student practice hotel conversations like check-in, room service, and asking for directions.",
        f"{_CLOSING} {_NATURAL} {_CORRECT}",
    ),
    "school": (
        "You are a friendly teacher helping students with school-related conversations.",
        f"{_CLOSING} {_NATURAL}",
    ),
    "shop": (
        "You are a helpful shop assistant. Help the student practice shopping conversations.",
        _CLOSING,
    ),
    "food": (
        "You are a friendly restaurant server helping students order food.",
        _CLOSING,
    ),
    "present": (
        "You are a helpful shop assistant in a gift shop. Help the student practice buying presents.",
        _CLOSING,
    ),
}

SCENARIOS: List[str] = list(ROLES)

OPENING_INSTRUCTION = (
    "Please begin the conversation now. Greet the student in your role and ask a first, simple question."
)

TARGET_VOCABULARY: Dict[str, List[str]] = {
    "restaurant": ["menu", "order", "bill", "table", "drink", "dessert", "please", "thank you"],
    "shopping": ["price", "size", "how much", "cheaper", "try on", "receipt", "cash", "card"],
    "shop": ["how much", "price", "buy", "apple", "bag", "cost", "expensive", "cheap"],
    "airport": ["passport", "ticket", "gate", "luggage", "boarding", "flight", "check-in", "delay"],
    "doctor": ["pain", "headache", "fever", "medicine", "appointment", "cough", "hurt", "sick"],
    "hotel": ["room", "reservation", "key", "breakfast", "check-in", "check-out", "towel", "floor"],
    "school": ["homework", "teacher", "lesson", "classroom", "pencil", "test", "break", "subject"],
    "food": ["hungry", "pizza", "water", "salad", "sandwich", "would like", "spicy", "soup"],
    "present": ["gift", "birthday", "wrap", "present", "card", "how much", "friend", "ribbon"],
}

# Vocabulary trainer word lists: (german, english, difficulty)
VOCABULARY: Dict[str, List[Tuple[str, str, str]]] = {
    "restaurant": [
        ("die Speisekarte", "menu", "easy"),
        ("die Rechnung", "bill", "easy"),
        ("der Tisch", "table", "easy"),
        ("das Getränk", "drink", "easy"),
        ("der Nachtisch", "dessert", "medium"),
        ("die Vorspeise", "starter", "medium"),
        ("das Trinkgeld", "tip", "medium"),
        ("die Reservierung", "reservation", "hard"),
        ("der Kellner", "waiter", "hard"),
    ],
    "shopping": [
        ("der Preis", "price", "easy"),
        ("die Größe", "size", "easy"),
        ("billig", "cheap", "easy"),
        ("teuer", "expensive", "medium"),
        ("die Quittung", "receipt", "medium"),
        ("die Umkleidekabine", "fitting room", "hard"),
        ("das Sonderangebot", "special offer", "hard"),
    ],
    "airport": [
        ("der Reisepass", "passport", "easy"),
        ("das Gepäck", "luggage", "easy"),
        ("der Flug", "flight", "easy"),
        ("das Flugticket", "ticket", "medium"),
        ("die Verspätung", "delay", "medium"),
        ("die Bordkarte", "boarding pass", "hard"),
        ("die Sicherheitskontrolle", "security check", "hard"),
    ],
    "doctor": [
        ("der Schmerz", "pain", "easy"),
        ("das Fieber", "fever", "easy"),
        ("die Medizin", "medicine", "easy"),
        ("der Husten", "cough", "medium"),
        ("die Kopfschmerzen", "headache", "medium"),
        ("der Termin", "appointment", "hard"),
        ("das Rezept", "prescription", "hard"),
    ],
    "hotel": [
        ("das Zimmer", "room", "easy"),
        ("der Schlüssel", "key", "easy"),
        ("das Frühstück", "breakfast", "easy"),
        ("das Handtuch", "towel", "medium"),
        ("der Aufzug", "elevator", "medium"),
        ("die Rezeption", "reception", "hard"),
    ],
    "school": [
        ("der Lehrer", "teacher", "easy"),
        ("der Bleistift", "pencil", "easy"),
        ("die Hausaufgabe", "homework", "easy"),
        ("das Klassenzimmer", "classroom", "medium"),
        ("das Fach", "subject", "medium"),
        ("der Stundenplan", "timetable", "hard"),
    ],
    "food": [
        ("das Wasser", "water", "easy"),
        ("der Apfel", "apple", "easy"),
        ("das Brot", "bread", "easy"),
        ("die Suppe", "soup", "medium"),
        ("scharf", "spicy", "medium"),
        ("das Gemüse", "vegetables", "hard"),
    ],
    "present": [
        ("das Geschenk", "gift", "easy"),
        ("der Geburtstag", "birthday", "easy"),
        ("die Karte", "card", "easy"),
        ("einpacken", "wrap", "medium"),
        ("das Band", "ribbon", "hard"),
    ],
}
VOCABULARY["shop"] = VOCABULARY["shopping"]

DIFFICULTIES: List[str] = ["easy", "medium", "hard"]


def normalize_scenario(scenario: str | None) -> str:
    key = (scenario or "").strip().lower()
    return key if key in ROLES else DEFAULT_SCENARIO


def normalize_level(level: str | None) -> str:
    key = (level or "").strip().upper()
    return key if key in LEVEL_GUIDES else DEFAULT_LEVEL


def system_prompt(scenario: str, level: str) -> str:
    """Compose the role-play system prompt; unknown values fall back to defaults."""
    role, closing = ROLES[normalize_scenario(scenario)]
    guide = LEVEL_GUIDES[normalize_level(level)]
    return f"{role} {guide} {closing}"


def words_for(scenario: str | None, difficulty: str | None) -> List[Dict[str, str]]:
    """Word list for the vocabulary trainer; "hard" includes easier words too."""
    pool = VOCABULARY[normalize_scenario(scenario)]
    wanted = (difficulty or "").strip().lower()
    if wanted not in DIFFICULTIES:
        wanted = "medium"
    ceiling = DIFFICULTIES.index(wanted)
    return [
        {"de": de, "en": en}
        for de, en, tier in pool
        if DIFFICULTIES.index(tier) <= ceiling
    ]
