"""Spell checking of Harvest notes against a team dictionary."""

from dataclasses import dataclass, field

from patterns import Patterns


@dataclass
class Dictionary:
    """Set of known words, compared case-insensitively."""

    words: set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.words)

    def add_text(self, text: str) -> None:
        for word in Patterns.WORD.findall(text or ""):
            self.words.add(word.lower())

    def is_known_word(self, word: str) -> bool:
        return word.lower() in self.words


def find_misspellings(notes: str, dictionary: Dictionary) -> list[str]:
    """Unknown words in notes, in order of first appearance."""
    text = Patterns.URL.sub(" ", notes or "")
    unknown = []
    for word in Patterns.WORD.findall(text):
        # Skip single letters and acronyms like API or QA
        if len(word) < 2 or word.isupper():
            continue
        if not dictionary.is_known_word(word) and word not in unknown:
            unknown.append(word)
    return unknown


def load_dictionary(config: dict, redmine) -> Dictionary | None:
    """Build the dictionary from the Redmine wiki page and local word lists.

    Returns:
        None if no dictionary source is configured.
    """
    spellcheck = config.get("spellcheck", {})
    project = spellcheck.get("project")
    page = spellcheck.get("wiki_page")
    word_file = spellcheck.get("word_file")
    extra = spellcheck.get("words", [])

    if not (project or word_file or extra):
        return None

    dictionary = Dictionary()
    if project and page:
        text = redmine.get_wiki_text(project, page)
        if text is None:
            print(f"[!] Dictionary wiki page {project}/{page} not found")
        else:
            dictionary.add_text(text)
    if word_file:
        with open(word_file, encoding="utf-8") as f:
            dictionary.add_text(f.read())
    dictionary.add_text(" ".join(extra))

    print(f"[*] Loaded dictionary with {len(dictionary)} words")
    return dictionary
