"""
Prompt builders for model-answer generation.

Batch mode enumerates questions by 1-based position and asks for a JSON object
keyed by that position. Paper mode sends the question tree and asks for the
same tree back, keyed by question_number.
"""

import json
from typing import Any, Dict, List, Optional

BATCH_PROMPT_HEADER = (
    "Generate comprehensive answers for the following exam questions. For each question, "
    "provide an answer in the format specified ('paragraph' or 'points').\n\n"
)

BATCH_PROMPT_FOOTER = (
    "For each question, provide a thorough answer that would receive full marks. "
    "Format your response as a JSON object with the question indices as keys (\"1\", \"2\", ...) "
    "and the answers as values. For 'points' format answers, provide an array of points. "
    "For 'paragraph' format answers, provide a well-structured paragraph. "
    "Return ONLY the JSON object."
)

PAPER_PROMPT = """Generate model answers for every question in the exam paper below.

Paper: {subject} | {class_name} | {examiner} | {year}{paper_type}

Questions (JSON):
{questions_json}

Rules:
- Answer every question and sub-question listed; a question with sub-questions may have an empty answer if all of its marks sit in the sub-questions.
- Follow each question's answer_format: "paragraph" → a single well-structured string, "points" → an array of strings.
- Scale the depth of each answer to its marks.
- Keep question_number exactly as given.

Return ONLY a JSON object of this shape:
{{
  "questions": [
    {{
      "question_number": "1",
      "answer_format": "paragraph",
      "answer": "...",
      "sub_questions": [
        {{"question_number": "a", "answer_format": "points", "answer": ["...", "..."], "sub_questions": []}}
      ]
    }}
  ]
}}"""


def _marks_text(marks) -> str:
    if marks is None:
        return "Not specified"
    return str(int(marks)) if float(marks).is_integer() else str(marks)


def build_batch_prompt(questions: List[Dict[str, Any]]) -> str:
    """
    Args:
        questions: dicts with content, answer_format, marks and optional context
                   (the parent question's text)
    """
    prompt = BATCH_PROMPT_HEADER
    for index, question in enumerate(questions, start=1):
        if question.get("context"):
            prompt += f"Question {index} (part of: {question['context']}): {question['content']}\n"
        else:
            prompt += f"Question {index}: {question['content']}\n"
        prompt += f"Answer format: {question['answer_format']}\n"
        prompt += f"Marks: {_marks_text(question.get('marks'))}\n\n"
    return prompt + BATCH_PROMPT_FOOTER


def build_paper_prompt(metadata: Dict[str, Any], questions: List[Dict[str, Any]]) -> str:
    paper_type: Optional[str] = metadata.get("paper_type")
    return PAPER_PROMPT.format(
        subject=metadata.get("subject", ""),
        class_name=metadata.get("class", ""),
        examiner=metadata.get("examiner", ""),
        year=metadata.get("year", ""),
        paper_type=f" | {paper_type}" if paper_type else "",
        questions_json=json.dumps(questions, indent=2, ensure_ascii=False),
    )
