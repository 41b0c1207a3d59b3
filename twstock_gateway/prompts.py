from datetime import date
from typing import Optional

ANALYSIS_TYPES = ("news", "risk")

NEWS_PROMPT = """作為專業股票分析師，請分析台灣股票 {stock_id} {stock_name} 在 {today} 的最新市場消息面。

請嚴格按照以下格式提供分析：

【正面因素】
1. [具體利多因素1 - 請提供實際數據或事件，包含影響程度]
2. [具體利多因素2 - 請提供實際數據或事件，包含影響程度]
3. [具體利多因素3 - 請提供實際數據或事件，包含影響程度]

【負面因素】
1. [具體利空因素1 - 請提供風險分析和影響程度]
2. [具體利空因素2 - 請提供風險分析和影響程度]
3. [具體利空因素3 - 請提供風險分析和影響程度]

【評分項目詳情】
請為以下項目分配具體分數（每個項目-2到+4分）：
• 營收成長性：[分數]分 - [理由]
• 盈利能力：[分數]分 - [理由]
• 市場地位：[分數]分 - [理由]
• 行業前景：[分數]分 - [理由]
• 新聞影響：[分數]分 - [理由]
• 技術面：[分數]分 - [理由]

【總分計算】
請詳細說明每個項目的分數計算過程和總分

【最終評分】[必須是-10到+10的整數]

【投資建議】[50字內的具體建議]

請基於最新市場資訊提供真實、客觀的分析。"""

RISK_PROMPT = """作為專業風險分析師，請分析台灣股票 {stock_id} {stock_name} 在 {today} 的風險面因素。

請嚴格按照以下格式提供分析：

【高風險因素】
1. [具體高風險1 - 請說明風險程度和影響，包含具體數據]
2. [具體高風險2 - 請說明風險程度和影響，包含具體數據]
3. [具體高風險3 - 請說明風險程度和影響，包含具體數據]

【中風險因素】
1. [具體中風險1 - 請說明潛在影響和監控要點]
2. [具體中風險2 - 請說明潛在影響和監控要點]

【低風險因素】
1. [具體低風險1 - 請說明輕微影響和觀察要點]
2. [具體低風險2 - 請說明輕微影響和觀察要點]

【風險緩衝因素】
1. [公司優勢1 - 如何抵禦風險，包含具體數據]
2. [公司優勢2 - 如何抵禦風險，包含具體數據]
3. [公司優勢3 - 如何抵禦風險，包含具體數據]

【評分項目詳情】
請為以下項目分配具體分數（負分表示風險，正分表示抵抗力）：
• 財務風險：[分數]分 - [理由，包含負債比率、流動性等]
• 市場風險：[分數]分 - [理由，包含市場競爭、客戶集中度等]
• 營運風險：[分數]分 - [理由，包含供應鏈、技術更新等]
• 行業風險：[分數]分 - [理由，包含政策變化、行業週期等]
• 管理風險：[分數]分 - [理由，包含治理結構、管理層變動等]
• 風險緩衝力：[分數]分 - [理由，包含現金流、競爭優勢等]

【總分計算】
請詳細說明每個項目的分數計算過程和總分
（評分標準：-10到+10，-10表示極高風險，+10表示極低風險）

【最終評分】[必須是-10到+10的整數]

【風險建議】[50字內的具體建議]

請提供基於實際情況的客觀風險評估，特別是關注財務槓桿、現金流、行業政策變化等實際指標。"""


def build_prompt(stock_id: str, stock_name: str, analysis_type: str, today: Optional[date] = None) -> str:
    if analysis_type not in ANALYSIS_TYPES:
        raise ValueError(f"Unsupported analysis type: {analysis_type}")
    template = NEWS_PROMPT if analysis_type == "news" else RISK_PROMPT
    day = today or date.today()
    return template.format(
        stock_id=stock_id,
        stock_name=stock_name or "",
        today=f"{day.year}/{day.month}/{day.day}",
    )
