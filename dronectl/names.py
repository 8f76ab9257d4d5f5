"""Human-readable Drone names in the ``adjective-surname`` style.

Names are DNS-1123 labels (lowercase letters, digits and ``-``) so they are
valid record names as-is.
"""

from __future__ import annotations

import random
from typing import Collection, Optional

ADJECTIVES = (
    "admiring", "adoring", "agitated", "amazing", "angry", "awesome", "blissful",
    "bold", "boring", "brave", "busy", "charming", "clever", "cool", "compassionate",
    "competent", "confident", "cranky", "crazy", "dazzling", "determined", "distracted",
    "dreamy", "eager", "ecstatic", "elastic", "elated", "elegant", "eloquent", "epic",
    "fervent", "festive", "flamboyant", "focused", "friendly", "frosty", "gallant",
    "gifted", "goofy", "gracious", "happy", "hardcore", "heuristic", "hopeful",
    "hungry", "infallible", "inspiring", "jolly", "jovial", "keen", "kind", "laughing",
    "loving", "lucid", "magical", "modest", "musing", "mystifying", "naughty",
    "nervous", "nifty", "nostalgic", "objective", "optimistic", "peaceful", "pedantic",
    "pensive", "practical", "priceless", "quirky", "quizzical", "relaxed", "reverent",
    "romantic", "sad", "serene", "sharp", "silly", "sleepy", "stoic", "stupefied",
    "suspicious", "sweet", "tender", "thirsty", "trusting", "unruffled", "upbeat",
    "vibrant", "vigilant", "vigorous", "wizardly", "wonderful", "xenodochial",
    "youthful", "zealous", "zen",
)

SURNAMES = (
    "albattani", "allen", "almeida", "archimedes", "ardinghelli", "babbage", "banach",
    "bardeen", "bartik", "bassi", "bell", "bhabha", "blackwell", "bohr", "booth",
    "borg", "bose", "brahmagupta", "brattain", "brown", "carson", "chandrasekhar",
    "curie", "darwin", "davinci", "dijkstra", "einstein", "elion", "engelbart",
    "euclid", "euler", "fermat", "fermi", "feynman", "franklin", "galileo", "gates",
    "goldberg", "goldstine", "goodall", "hamilton", "hawking", "heisenberg", "hertz",
    "hodgkin", "hopper", "hypatia", "jang", "jennings", "johnson", "kalam", "kepler",
    "khorana", "knuth", "kowalevski", "lalande", "lamarr", "leakey", "leavitt",
    "lovelace", "lumiere", "mayer", "mccarthy", "mcclintock", "meitner", "mendel",
    "minsky", "mirzakhani", "morse", "newton", "nobel", "noether", "pare", "pascal",
    "pasteur", "payne", "perlman", "pike", "poincare", "ptolemy", "raman", "ramanujan",
    "ride", "ritchie", "rosalind", "saha", "sammet", "shannon", "shockley", "sinoussi",
    "snyder", "stallman", "swartz", "tesla", "thompson", "torvalds", "turing",
    "volhard", "wescoff", "wiles", "williams", "wilson", "wozniak", "wright", "yalow",
    "yonath",
)

MAX_ATTEMPTS = 10


def random_name(retry: int = 0, rng: Optional[random.Random] = None) -> str:
    """Return one random name; retries append a digit to widen the space."""
    rng = rng or random
    name = f"{rng.choice(ADJECTIVES)}-{rng.choice(SURNAMES)}"
    if name == "boring-wozniak":  # Steve Wozniak is not boring
        return random_name(retry, rng)
    if retry > 0:
        name = f"{name}{rng.randint(0, 9)}"
    return name


def generate_name(existing: Collection[str] = (), rng: Optional[random.Random] = None) -> str:
    """Return a name not present in *existing*.

    Gives up after ``MAX_ATTEMPTS`` draws and returns the last candidate; a
    collision then surfaces as the store's already-exists error and the
    reconciliation is retried.
    """
    taken = set(existing)
    name = random_name(0, rng)
    for attempt in range(1, MAX_ATTEMPTS):
        if name not in taken:
            return name
        name = random_name(attempt, rng)
    return name
