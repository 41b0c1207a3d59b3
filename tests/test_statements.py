from twstock_gateway.normalizer import record_from_structured
from twstock_gateway.statements import (
    build_structured_financials,
    period_key,
    quarterly_yoy_growth,
    rows_for_company,
    year_month,
)


def test_period_key_maps_zero_to_year():
    assert period_key("0") == "year"
    assert period_key("00") == "year"
    assert period_key("") == "year"
    assert period_key("3") == "Q3"
    assert period_key("03") == "Q3"


def test_year_month_accepts_gregorian_and_roc():
    assert year_month("202405") == (2024, 5)
    assert year_month("11305") == (2024, 5)
    assert year_month("11313") is None
    assert year_month("") is None


def test_rows_for_company_matches_either_code_column():
    rows = [{"公司代號": "2330"}, {"公司代碼": "2330 "}, {"公司代號": "2317"}, "junk"]
    assert len(rows_for_company(rows, "2330")) == 2


def test_twse_structure_with_ratio_dataset_margin():
    income = [
        {"公司代號": "2330", "年度": "113", "季別": "1", "基本每股盈餘（元）": "8.70", "淨利（淨損）歸屬於母公司業主": "225,000"},
        {"公司代號": "2330", "年度": "113", "季別": "0", "基本每股盈餘（元）": "32.34"},
    ]
    balance = [{"公司代號": "2330", "年度": "113", "季別": "1", "權益總額": "4,500,000"}]
    ratio = [{"公司代號": "2330", "季別": "1", "毛利率(%)(營業毛利)/(營業收入)": "53.1"}]
    revenue = [
        {"公司代號": "2330", "資料年月": "11304", "營業收入-去年同月增減(%)": "59.6", "營業收入-當月營收": "236,000"},
        {"公司代號": "2330", "資料年月": "11303", "營業收入-去年同月增減(%)": "34.3", "營業收入-當月營收": "195,000"},
    ]
    structured = build_structured_financials(income, balance, revenue, ratio, source="twse")

    assert structured["eps"] == {"quarters": {"Q1": 8.7}, "year": 32.34}
    assert structured["roe"]["quarters"] == {"Q1": 5.0}
    assert structured["profitMargin"]["quarters"] == {"Q1": 53.1}
    assert structured["revenueGrowth"]["months"] == {"11304": 59.6, "11303": 34.3}
    assert structured["revenueGrowth"]["year"] == 59.6
    assert structured["_debug"]["incomeCount"] == 2
    assert record_from_structured(structured, "2330", "twse").has_figures()


def test_tpex_margin_falls_back_to_revenue_minus_cost():
    income = [{"公司代號": "6488", "年度": "113", "季別": "2", "營業收入": "1000", "營業成本": "650"}]
    structured = build_structured_financials(income, [], [], source="tpex")
    assert structured["profitMargin"]["quarters"] == {"Q2": 35.0}


def test_tpex_revenue_growth_month_over_month_and_trailing_year():
    revenue = []
    for index in range(24):
        year = 113 if index < 12 else 112
        month = 12 - (index % 12)
        amount = 200 if year == 113 else 100
        revenue.append({"公司代號": "6488", "資料年月": f"{year}{month:02d}", "營業收入-當月營收": str(amount)})
    revenue[0]["營業收入-當月營收"] = "300"

    growth = build_structured_financials([], [], revenue, source="tpex")["revenueGrowth"]
    assert growth["months"]["11312"] == 50.0
    assert growth["months"]["11312_yoy"] == 200.0
    assert growth["year"] == 108.33
    assert growth["quarters"]["Q4"] == round((700 - 300) / 300 * 100, 2)


def test_quarterly_yoy_growth_compares_same_quarter_last_year():
    rows = [
        {"資料年月": "202301", "營業收入": "100"},
        {"資料年月": "202302", "營業收入": "100"},
        {"資料年月": "202303", "營業收入": "100"},
        {"資料年月": "202401", "營業收入": "150"},
        {"資料年月": "202402", "營業收入": "150"},
        {"資料年月": "202403", "營業收入": "150"},
    ]
    assert quarterly_yoy_growth(rows) == {"Q1": 50.0}


def test_empty_structure_has_no_figures_and_collapses_to_record():
    structured = build_structured_financials([], [], [], source="twse")
    assert not record_from_structured(structured, "2330", "twse").has_figures()


def test_revenue_growth_alone_does_not_count_as_figures():
    revenue = [{"公司代號": "2330", "資料年月": "11304", "營業收入-去年同月增減(%)": "59.6"}]
    structured = build_structured_financials([], [], revenue, source="twse")
    assert structured["revenueGrowth"]["year"] == 59.6
    assert not record_from_structured(structured, "2330", "twse").has_figures()


def test_record_from_structured_takes_latest_quarter():
    structured = {
        "eps": {"quarters": {"Q1": 8.7, "Q3": 12.5, "Q2": 9.5}, "year": 30},
        "roe": {"quarters": {}, "year": 25.1},
        "profitMargin": {"quarters": {"Q3": 57.8}, "year": None},
        "revenueGrowth": {"months": {}, "quarters": {}, "year": 33.9},
    }
    record = record_from_structured(structured, "2330", "twse")
    assert record.eps == 12.5
    assert record.roe == 25.1
    assert record.gross_margin == 57.8
    assert record.to_dict()["revenueGrowth"] == 33.9
