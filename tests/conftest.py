import pytest

from conceptgraph.models import Comment, JurorBlock

RAW_FEEDBACK = """Jury comments

Anna Berg
The natural light in the reading rooms is beautiful and serene. The natural light across the courtyard changes through the day.

The facade materials feel heavy at street level.

Tomas Reyes
The natural light in the reading rooms is a compelling idea. The facade materials could be lighter toward the street.

Lina Okafor
The facade materials are inconsistent along the street edge. The courtyard planting could soften the facade materials.
"""


def _block(juror: str, *texts: str) -> JurorBlock:
    return JurorBlock(
        juror=juror,
        comments=tuple(Comment(id=f"{juror}#c{i}", text=t) for i, t in enumerate(texts)),
    )


@pytest.fixture
def raw_feedback() -> str:
    return RAW_FEEDBACK


@pytest.fixture
def juror_blocks() -> list[JurorBlock]:
    """Three jurors, two sentences each: one on daylight, one on the facade."""
    return [
        _block(
            "Anna Berg",
            "The natural light in the reading rooms is beautiful. The facade materials feel heavy at street level.",
        ),
        _block(
            "Tomas Reyes",
            "The natural light in the reading rooms is compelling. The facade materials could be lighter.",
        ),
        _block(
            "Lina Okafor",
            "Natural light reaches the reading rooms through the roof. The facade materials are inconsistent along the street.",
        ),
    ]


@pytest.fixture
def themed_blocks() -> list[JurorBlock]:
    """Twelve sentences split evenly between two unrelated themes."""
    return [
        _block(
            "Anna Berg",
            "Natural light floods the reading rooms at noon. Natural light enters the reading rooms from above. "
            "Natural light softens the reading rooms in winter.",
            "The facade materials weather badly near the street. The facade materials look heavy near the street. "
            "The facade materials need care near the street.",
        ),
        _block(
            "Tomas Reyes",
            "Natural light warms the reading rooms each morning. Natural light fills the reading rooms evenly. "
            "Natural light reaches the reading rooms deep inside.",
            "The facade materials crack easily near the street. The facade materials stain quickly near the street. "
            "The facade materials feel cold near the street.",
        ),
    ]


@pytest.fixture
def designer_blocks() -> list[JurorBlock]:
    return [
        _block(
            "Studio North",
            "Natural light is drawn into the reading rooms through a sawtooth roof. "
            "The facade materials are recycled brick laid in a loose bond.",
        ),
    ]
