from __future__ import annotations

import json
from typing import Any, List, Optional

from .schemas import AnswerMap, QAPair

# ---------------------------------------------------------------------------
# Proposal flow constants. The hints are advisory coverage targets handed to
# the planner; they are not a fixed questioning order.
# ---------------------------------------------------------------------------

PROPOSAL_HINTS: List[str] = [
    "読者像（想定読者・非想定読者・読むシーン・読み方）",
    "コアメッセージ（最重要メッセージ・動機・著者が書く理由・一言要約）",
    "メインポイント（3点程度：主張・根拠・経験・NG/注意・裏付け）",
    "追加ポイント（あればもう1点）",
    "比較・賛否（共感する他者の方法／異なる方法・長所短所）",
    "エクストラ（興味が薄い層へのフック・必要習慣/アイテム・読後の姿・文体トーン・画像の要否・著者写真）",
    "章立て骨子（序章～）",
    "著者情報・補足事項",
]

WELCOME_TEXT = (
    "はじめにこれから作る本の企画書を作りましょう。"
    "下の入力欄から作成したい本について書いてみて下さい！"
)

SEED_ANSWER_KEY = "__seed_pitch"
ANSWER_KEY_PREFIX = "q"
DEFAULT_MAX_ROUNDS = 12

QUESTION_PREFIX = "【質問】"
FOLLOWUP_PREFIX = "・"
MAX_FOLLOWUPS = 2

UNKNOWN_QUESTION_LABEL = "(unknown)"
PENDING_QUESTION_PLACEHOLDER = "(質問)"
EMPTY_SEED_PLACEHOLDER = "(未入力)"
EMPTY_TRANSCRIPT_PLACEHOLDER = "(なし)"

SUMMARY_SEED_LIMIT = 800
SUMMARY_ANSWER_LIMIT = 1000

_PLANNER_SCHEMA_EXAMPLES = (
    '{"decision":"ask","question":"想定読者は？","followups":["読むシーンは？"]}',
    '{"decision":"summary","reason":"読者像と主要な価値、章立てが揃ったため"}',
)

_SUMMARY_SECTIONS = (
    "企画の背景（読者課題/市場感/著者動機）",
    "セールスポイント（3点）",
    "対象読者（想定/非想定・読むシーン/読み方）",
    "章立ての骨子（序章〜全体像）",
    "著者について（書く理由・強み）",
    "補足事項（写真・取材・体裁・今後の研究など）",
)


def answer_key(index: int) -> str:
    """Key for the index-th answered question (1-based): q1, q2, ..."""
    return f"{ANSWER_KEY_PREFIX}{int(index)}"


def seed_pitch(answers: AnswerMap | None) -> str:
    if not isinstance(answers, dict):
        return ""
    value = answers.get(SEED_ANSWER_KEY)
    return "" if value is None else str(value)


def encode_answer(question: str, answer: str) -> str:
    return json.dumps({"question": question, "answer": answer}, ensure_ascii=False)


def extract_qa_pairs(answers: AnswerMap | None) -> List[QAPair]:
    """
    Question/answer records from an AnswerMap, skipping the seed pitch.

    Values that are not well-formed records degrade to the raw string under a
    placeholder question label instead of raising.
    """
    pairs: List[QAPair] = []
    if not isinstance(answers, dict):
        return pairs
    for key, value in answers.items():
        if key == SEED_ANSWER_KEY:
            continue
        record = _decode_answer(value)
        if record is not None:
            pairs.append(record)
        else:
            pairs.append({"question": UNKNOWN_QUESTION_LABEL, "answer": _raw_text(value)})
    return pairs


def build_question_message(question: str, followups: List[str] | None = None) -> str:
    lines = [f"{QUESTION_PREFIX}{question}"]
    if isinstance(followups, list):
        for item in followups[:MAX_FOLLOWUPS]:
            lines.append(f"{FOLLOWUP_PREFIX}{item}")
    return "\n".join(lines)


def parse_question_message(content: str | None) -> Optional[str]:
    """The main question of a posted question message, or None for any other message."""
    if not content or not content.startswith(QUESTION_PREFIX):
        return None
    first_line = content.split("\n", 1)[0]
    question = first_line[len(QUESTION_PREFIX):].strip()
    return question or None


def build_planner_prompt(
    agent_name: str,
    answers: AnswerMap | None,
    asked_count: int,
    max_rounds: int = DEFAULT_MAX_ROUNDS,
) -> str:
    seed = seed_pitch(answers)
    qa_list = "\n\n".join(
        f"Q{i}: {pair['question']}\nA{i}: {pair['answer']}"
        for i, pair in enumerate(extract_qa_pairs(answers), start=1)
    )
    hint_bullets = "\n".join(f"- {hint}" for hint in PROPOSAL_HINTS)

    return "\n".join([
        f"あなたは編集者AI「{agent_name}」。単発の“1枚企画書”を作るため、必要最小限の質問で著者から情報を引き出します。",
        "今の収集状況を鑑み、次にすべきことを **JSONのみ** で返してください。",
        "方針:",
        f"- 長引かせない。1ターンで主質問1つ＋必要なら補助質問を最大{MAX_FOLLOWUPS}つまで。",
        '- すでに十分な情報が集まったと判断したら、"summary" を選びます。',
        "- 想定する1枚企画書の項目（柔軟に）：背景/読者/提供価値(セールスポイント)/章立て骨子/著者情報/補足。",
        f"- 参考ヒント（完全準拠は不要）:\n{hint_bullets}",
        "",
        "制約:",
        "- 出力は必ず JSON のみ。前後の文章・記号・コードフェンスは禁止。",
        '- 文字数を絞る。説明は "reason" に短く。',
        f"- 現時点のQ&Aが {int(asked_count)} 件。最大でも {int(max_rounds)} ラウンド以内にまとめ（summary）に進むこと。",
        "",
        f"初期ピッチ（著者の最初の入力）:\n{seed or EMPTY_SEED_PLACEHOLDER}\n",
        f"これまでのQ&A:\n{qa_list or EMPTY_TRANSCRIPT_PLACEHOLDER}\n",
        "返答JSONスキーマ例（どちらか）:",
        *_PLANNER_SCHEMA_EXAMPLES,
    ])


def build_summary_prompt(agent_name: str, answers: AnswerMap | None) -> str:
    seed = seed_pitch(answers)
    seed_line = f"- Seed: {seed[:SUMMARY_SEED_LIMIT]}" if seed else ""
    qa_lines = "\n".join(
        f"- Q{i}: {pair['question']}\n  A{i}: {pair['answer'][:SUMMARY_ANSWER_LIMIT]}"
        for i, pair in enumerate(extract_qa_pairs(answers), start=1)
    )
    section_lines = [f"- {section}" for section in _SUMMARY_SECTIONS]

    return "\n".join([
        f"あなたは編集者AI「{agent_name}」。以下の材料から“1枚企画書”のドラフトを日本語で作成します。",
        "禁止: 事実の創作・未回答の補完。材料にない情報は書かない。空欄は「（未記入）」と明示。",
        "構成（見出し＋箇条書き中心。必要なら短い1〜2文の補足可）:",
        *section_lines,
        "",
        "材料:",
        seed_line,
        qa_lines or "(Q&Aなし)",
    ])


def _decode_answer(value: Any) -> Optional[QAPair]:
    obj = value
    if isinstance(value, str):
        try:
            obj = json.loads(value)
        except ValueError:
            return None
    if not isinstance(obj, dict):
        return None
    question = obj.get("question")
    answer = obj.get("answer")
    if not question or not answer:
        return None
    return {"question": str(question), "answer": str(answer)}


def _raw_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
