"""Text helpers for the chat assistant and the quiz generator.

These utilities sit on the client side of the generative-language call:
they build the prompts and request bodies, pull the reply text out of
the vendor response, clean it for display, and turn a generated quiz
(JSON, often wrapped in markdown fences) into validated
`QuizQuestionIn` objects. Nothing here talks to the network.
"""

import html
import json
import re
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..schemas import QuizAttemptIn, QuizQuestionIn
from ..services import compute_score

FALLBACK_REPLY = "Sorry, I couldn't generate a reply. Please try again."
OFF_TOPIC_REPLY = "This is a Career Guidance App. Please ask only career-related questions."
QUESTIONS_PER_QUIZ = 5

CAREER_KEYWORDS = (
    # careers
    "career", "job", "resume", "cv", "course", "degree", "skills", "study",
    "learning", "intern", "placement", "portfolio", "interview", "salary",
    "role", "company", "hiring", "employment", "profession", "work",
    "guidance", "advice", "help",
    # education
    "education", "school", "university", "college", "graduate", "diploma",
    "certificate", "12th", "11th", "10th", "grade", "class", "subject",
    "stream", "field", "engineering", "medical", "commerce", "arts",
    "science", "bachelor", "master", "phd", "doctorate", "mba",
    # open questions
    "what", "which", "how", "when", "where", "why", "who", "should", "can",
    "could", "would", "best", "better", "top", "suggest", "recommend",
    "future", "option", "path", "after", "next",
    # greetings
    "hello", "hi", "hey", "thanks", "thank you",
)
SHORT_MESSAGE_CHARS = 50

_TAG_RE = re.compile(r"<[^>]*>")
_BOLD_RE = re.compile(r"(\*\*|__)(.+?)\1", re.DOTALL)
_ITALIC_RE = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

CAREER_PROMPT = """\
You are CareerBot, a helpful career guidance assistant.
Provide clear, concise, and practical career advice.
Focus on educational paths, job opportunities, skills development, and career planning.

User question: {question}

Please provide a helpful response about career guidance, education options, or job-related advice."""

QUIZ_PROMPT = """\
Generate exactly {count} multiple choice questions about: {topic}

For each question provide:
1. The question text (clear and concise)
2. Exactly 4 options
3. The correct answer index (0 for first option, 1 for second, 2 for third, 3 for fourth)
4. A brief explanation of why the answer is correct (1-2 sentences)

Format the response as a valid JSON array like this:
[
  {{
    "question": "What is the question?",
    "options": ["Option 1", "Option 2", "Option 3", "Option 4"],
    "correctAnswer": 0,
    "explanation": "This is the explanation."
  }}
]

Rules:
- Questions should be educational and appropriate
- Make questions challenging but fair
- Options should be plausible
- Explanations should be informative
- Return ONLY the JSON array, no markdown formatting, no other text

Topic: {topic}"""


def career_prompt(question: str) -> str:
    return CAREER_PROMPT.format(question=question.strip())


def quiz_prompt(topic: str, count: int = QUESTIONS_PER_QUIZ) -> str:
    return QUIZ_PROMPT.format(topic=topic.strip(), count=count)


def build_generate_request(prompt: str) -> Dict:
    """Wrap a prompt in the `{contents: [{parts: [{text}]}]}` request body."""
    return {"contents": [{"parts": [{"text": prompt}]}]}


def extract_reply(payload: Dict) -> str:
    """Return the first candidate's text from a generate-content response.

    Raises ValueError when the response carries an `error` object or
    has no usable text.
    """
    error = payload.get("error")
    if error:
        raise ValueError(f"generation failed ({error.get('code')}): {error.get('message') or 'Unknown error'}")
    for candidate in payload.get("candidates") or []:
        parts = (candidate.get("content") or {}).get("parts") or []
        for part in parts:
            text = part.get("text")
            if text and text.strip():
                return text
    raise ValueError("no candidates with text in response")


def clean_reply_text(text: Optional[str]) -> str:
    """Strip HTML tags, entities and markdown emphasis from a model reply."""
    if not text:
        return ""
    out = _TAG_RE.sub("", text)
    out = html.unescape(out).replace("\xa0", " ")
    out = _BOLD_RE.sub(r"\2", out)
    out = _ITALIC_RE.sub(r"\1", out)
    return out.strip()


def is_career_related(text: str) -> bool:
    """Lenient topic filter applied before a prompt is sent.

    Any keyword hit passes; short messages without a hit still pass when
    they look like a question.
    """
    lower = text.lower()
    if any(k in lower for k in CAREER_KEYWORDS):
        return True
    return len(text) <= SHORT_MESSAGE_CHARS and "?" in text


def parse_quiz_questions(text: str) -> List[QuizQuestionIn]:
    """Parse generated quiz JSON into validated questions.

    Markdown code fences around the array are ignored. Raises ValueError
    if the text is not a non-empty JSON array of well-formed questions.
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    start, end = cleaned.find("["), cleaned.rfind("]")
    if start == -1 or end < start:
        raise ValueError("no JSON array found in quiz response")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid quiz JSON: {e.msg}") from e
    if not isinstance(data, list) or not data:
        raise ValueError("quiz response contained no questions")
    out = []
    for idx, item in enumerate(data):
        try:
            out.append(QuizQuestionIn.model_validate(item))
        except PydanticValidationError as e:
            raise ValueError(f"question {idx} is malformed: {e.errors()[0]['msg']}") from e
    return out


def build_attempt(topic: str, questions: Sequence[QuizQuestionIn], answers: Sequence[int], time_taken: int = 0) -> QuizAttemptIn:
    """Mark the user's answers and compute the score for a finished quiz.

    `answers[i]` is the chosen option index for `questions[i]`; missing
    trailing answers count as unanswered (-1).
    """
    marked = []
    for i, q in enumerate(questions):
        chosen = answers[i] if i < len(answers) else -1
        marked.append(q.model_copy(update={"user_answer": chosen, "is_correct": chosen == q.correct_answer}))
    correct = sum(1 for q in marked if q.is_correct)
    return QuizAttemptIn(
        topic=topic,
        questions=marked,
        score=compute_score(correct, len(marked)),
        total_questions=len(marked),
        correct_answers=correct,
        time_taken=time_taken,
    )
