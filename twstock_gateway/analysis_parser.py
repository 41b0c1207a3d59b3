"""Best-effort extraction of score, comment and factor lists from AI prose.

Model output follows the prompt's 【】 layout only loosely, so every step has a
default and ``parse_analysis`` never raises.
"""
import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .models import AIAnalysisResult, ScoreDetail

logger = logging.getLogger(__name__)

SCORE_MIN = -10
SCORE_MAX = 10
COMMENT_LIMIT = 100
DEFAULT_COMMENT = "分析完成"
FALLBACK_COMMENT = "內容解析完成，請手動查看詳細分析"

SCORE_PATTERNS = [
    r"【最終評分】\s*[\[\]（）()]*\s*([+-]?\d+)",
    r"最終評分\s*[:：]\s*([+-]?\d+)",
    r"總評分\s*[:：]\s*([+-]?\d+)",
    r"評分\s*[:：]\s*([+-]?\d+)",
    r"得分\s*[:：]\s*([+-]?\d+)",
    r"總分\s*[:：]\s*([+-]?\d+)",
    r"([+-]?\d+)\s*分(?!析)",
]

COMMENT_PATTERNS = [
    r"評語[ \t]*[:：][ \t]*([^\n]+)",
    r"總結[ \t]*[:：][ \t]*([^\n]+)",
    r"建議[ \t]*[:：][ \t]*([^\n]+)",
    r"【(?:投資建議|風險建議)】\s*([\s\S]*?)(?=【|$)",
]

RECOMMENDATION_PATTERN = r"【(?:投資建議|風險建議)】\s*([\s\S]*?)(?=【|$)"
SCORE_DETAILS_HEADER = "【評分項目詳情】"
SCORE_DETAIL_LINE = re.compile(r"^[•·*\-]?\s*(.+?)\s*[:：]\s*([+-]?\d+)\s*分\s*[-－—]\s*(.+)$")
NUMBERED_ITEM = re.compile(r"^(?:\d+[.、](?!\d)|[(（]\d+[)）]|[①-⑳])\s*(.+)$")
BULLET_ITEM = re.compile(r"^[•·*\-]\s+(.+)$")

SECTION_HEADERS = {
    "news": {
        "positives": [["【正面因素】", "正面因素 (利多)", "正面因素（利多）"]],
        "negatives": [["【負面因素】", "負面/謹慎因素", "負面因素 (風險)", "負面因素（風險）"]],
    },
    "risk": {
        "positives": [["【風險緩衝因素】", "風險緩衝因素"]],
        "negatives": [["【高風險因素】", "負面風險因素"], ["【中風險因素】"]],
    },
}

KEYWORDS = {
    "news": {
        "positives": ["正面", "利好", "優勢", "機會", "成長"],
        "negatives": ["負面", "風險", "挑戰", "問題", "不利"],
        "recommendation": ["建議", "推薦", "結論"],
    },
    "risk": {
        "negatives": ["風險", "問題", "挑戰", "威脅", "不利", "下跌"],
        "positives": ["優勢", "緩衝", "保護", "防禦", "競爭力", "穩健"],
        "recommendation": ["建議", "推薦", "策略"],
    },
}

DEFAULT_FACTORS = {
    "news": (["營收表現穩健", "市場地位穩固", "技術優勢明顯"], ["行業競爭加劇", "成本壓力上升", "市場需求波動"]),
    "risk": (["現金流充足", "技術領先地位", "多元化客戶基礎"], ["財務槓桿過高", "行業競爭激烈", "政策變化風險"]),
}

MAX_FACTORS = 3


def extract_score(content: str) -> int:
    for pattern in SCORE_PATTERNS:
        match = re.search(pattern, content)
        if not match:
            continue
        try:
            value = int(match.group(1))
        except ValueError:
            continue
        # an out-of-range first match is discarded, not retried
        return value if SCORE_MIN <= value <= SCORE_MAX else 0
    return 0


def extract_comment(content: str, default: str = DEFAULT_COMMENT) -> str:
    for pattern in COMMENT_PATTERNS:
        match = re.search(pattern, content)
        if match:
            comment = match.group(1).strip()
            if comment:
                return truncate_comment(comment)
    return default


def truncate_comment(comment: str) -> str:
    if len(comment) > COMMENT_LIMIT:
        return comment[:COMMENT_LIMIT] + "..."
    return comment


def extract_items(text: str) -> List[str]:
    items = []
    for line in text.splitlines():
        stripped = line.strip()
        match = NUMBERED_ITEM.match(stripped) or BULLET_ITEM.match(stripped)
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return items


def section_text(content: str, headers: Sequence[str], bracket_only: bool = False) -> Optional[str]:
    """Text under the first header found, up to the next heading line.

    With ``bracket_only`` only a 【】 heading ends the section.
    """
    for header in headers:
        start = content.find(header)
        if start == -1:
            continue
        line_end = content.find("\n", start)
        if line_end == -1:
            return ""
        inline = content[start + len(header):line_end].strip()
        collected = [inline] if inline else []
        for line in content[line_end + 1:].splitlines():
            ends = line.strip().startswith("【") if bracket_only else _is_heading(line)
            if ends:
                break
            collected.append(line)
        return "\n".join(collected)
    return None


def _is_heading(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    if stripped.startswith("【"):
        return True
    if NUMBERED_ITEM.match(stripped) or BULLET_ITEM.match(stripped):
        return False
    return stripped.endswith((":", "：")) and len(stripped) <= 30


def extract_score_details(content: str) -> List[ScoreDetail]:
    text = section_text(content, [SCORE_DETAILS_HEADER], bracket_only=True)
    if not text:
        return []
    details = []
    for line in text.splitlines():
        match = SCORE_DETAIL_LINE.match(line.strip())
        if match:
            details.append(ScoreDetail(item=match.group(1).strip(), score=int(match.group(2)), reason=match.group(3).strip()))
    return details


def extract_recommendation(content: str) -> str:
    match = re.search(RECOMMENDATION_PATTERN, content)
    return match.group(1).strip() if match else ""


def extract_sections(content: str, analysis_type: str) -> Tuple[List[str], List[str]]:
    headers = SECTION_HEADERS.get(analysis_type, SECTION_HEADERS["news"])
    found: Dict[str, List[str]] = {"positives": [], "negatives": []}
    for side, groups in headers.items():
        for group in groups:
            text = section_text(content, group)
            if text:
                found[side].extend(extract_items(text))
    return found["positives"], found["negatives"]


def keyword_factors(content: str, analysis_type: str) -> Tuple[List[str], List[str], str]:
    words = KEYWORDS.get(analysis_type, KEYWORDS["news"])
    positives: List[str] = []
    negatives: List[str] = []
    recommendation = ""
    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        if analysis_type == "risk":
            if any(word in line for word in words["negatives"]):
                if len(line) > 10:
                    negatives.append(line)
            elif any(word in line for word in words["positives"]):
                if len(line) > 10:
                    positives.append(line)
            elif any(word in line for word in words["recommendation"]):
                recommendation = line
        else:
            if any(word in line for word in words["positives"]):
                if len(line) > 10 and not line.startswith(tuple(words["positives"])):
                    positives.append(line)
            elif any(word in line for word in words["negatives"]):
                if len(line) > 10 and not line.startswith(tuple(words["negatives"])):
                    negatives.append(line)
            elif any(word in line for word in words["recommendation"]):
                recommendation = line

    default_positives, default_negatives = DEFAULT_FACTORS.get(analysis_type, DEFAULT_FACTORS["news"])
    return positives or list(default_positives), negatives or list(default_negatives), recommendation


def generate_score_details(positives: List[str], negatives: List[str], analysis_type: str) -> List[ScoreDetail]:
    details = []
    if analysis_type == "risk":
        for index, reason in enumerate(negatives[:3]):
            details.append(ScoreDetail(f"風險因素 {index + 1}", [-3, -2, -1][index], reason))
        for index, reason in enumerate(positives[:2]):
            details.append(ScoreDetail(f"風險緩衝 {index + 1}", [2, 1][index], reason))
    else:
        for index, reason in enumerate(positives[:3]):
            details.append(ScoreDetail(f"正面因素 {index + 1}", [3, 2, 1][index], reason))
        for index, reason in enumerate(negatives[:2]):
            details.append(ScoreDetail(f"負面因素 {index + 1}", [-2, -1][index], reason))
    return details


def format_analysis_content(
    positives: List[str],
    negatives: List[str],
    score_details: List[ScoreDetail],
    recommendation: str,
    score: int,
    analysis_type: str,
    stock_name: str = "",
    now: Optional[datetime] = None,
) -> str:
    score_text = f"+{score}" if score > 0 else str(score)
    lines = []
    if analysis_type == "risk":
        marker = "🟢" if score > 0 else "🔴" if score < 0 else "🟡"
        lines.append(f"📊 {marker} {stock_name} 風險面分析評分: {score_text}/10")
        lines.append("")
        lines.append("🔴 風險因素:")
        lines.extend(f"{i}. {item}" for i, item in enumerate(negatives, 1))
        lines.append("")
        lines.append("🛡️ 風險緩衝因素:")
        lines.extend(f"{i}. {item}" for i, item in enumerate(positives, 1))
    else:
        marker = "🔴" if score > 0 else "⚫"
        lines.append(f"📊 {marker} {stock_name} 消息面分析評分: {score_text}/10")
        lines.append("")
        lines.append("🌟 正面因素 (利多):")
        lines.extend(f"{i}. {item}" for i, item in enumerate(positives, 1))
        lines.append("")
        lines.append("⚠️ 負面因素 (風險):")
        lines.extend(f"{i}. {item}" for i, item in enumerate(negatives, 1))

    if score_details:
        lines.append("")
        lines.append("📈 評分項目詳情:")
        for detail in score_details:
            sign = "+" if detail.score > 0 else ""
            lines.append(f"• {detail.item}: {sign}{detail.score}分 - {detail.reason}")

    if recommendation:
        lines.append("")
        lines.append("💡 建議:")
        lines.append(recommendation)

    stamp = (now or datetime.now()).strftime("%Y/%m/%d %H:%M:%S")
    lines.append("")
    lines.append("---")
    lines.append(f"*分析時間: {stamp}*")
    return "\n".join(lines)


def parse_analysis(
    content: str,
    analysis_type: str,
    stock_name: str = "",
    now: Optional[datetime] = None,
) -> AIAnalysisResult:
    try:
        return _parse(content or "", analysis_type, stock_name, now)
    except Exception as exc:
        logger.warning("analysis parse degraded to defaults: %s", exc)
        return AIAnalysisResult(
            content=content,
            score=0,
            comment=FALLBACK_COMMENT,
            analysis_type=analysis_type,
            structured=False,
        )


def _parse(content: str, analysis_type: str, stock_name: str, now: Optional[datetime]) -> AIAnalysisResult:
    score = extract_score(content)
    recommendation = extract_recommendation(content)
    positives, negatives = extract_sections(content, analysis_type)
    structured = bool(positives or negatives)

    if structured:
        score_details = extract_score_details(content)
    else:
        positives, negatives, keyword_recommendation = keyword_factors(content, analysis_type)
        recommendation = recommendation or keyword_recommendation
        positives, negatives = positives[:MAX_FACTORS], negatives[:MAX_FACTORS]
        score_details = generate_score_details(positives, negatives, analysis_type)

    comment = extract_comment(content, default="")
    if not comment:
        comment = truncate_comment(recommendation) if recommendation else DEFAULT_COMMENT

    formatted = format_analysis_content(
        positives, negatives, score_details, recommendation, score, analysis_type, stock_name, now=now
    )
    return AIAnalysisResult(
        content=formatted,
        raw_content=content,
        score=score,
        comment=comment,
        analysis_type=analysis_type,
        structured=structured,
        positives=positives,
        negatives=negatives,
        score_details=score_details,
    )
