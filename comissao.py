import math
from typing import Any, Dict, List, Optional

from errors import ValidationError

# teto de crédito por venda
LIMITE_CREDITO = 1_500_000
NUM_PARCELAS = 6

PAGO = "Pago"
PENDENTE = "Pendente"
ATRASADO = "Atrasado"
STATUS_PARCELA = (PAGO, PENDENTE, ATRASADO)

BASE_VENDA = "venda"
BASE_CREDITO = "credito"

# ---------- helpers ----------
def parse_num(v: Any) -> float:
    """
    Aceita números já prontos ou texto no formato brasileiro (1.234,56).
    Qualquer coisa não numérica vira 0.
    """
    if v is None or isinstance(v, bool):
        return 0.0
    if isinstance(v, (int, float)):
        try:
            n = float(v)
        except OverflowError:
            return 0.0
        return n if math.isfinite(n) else 0.0
    s = str(v).strip().replace(".", "").replace(",", ".", 1)
    if not s or "_" in s:
        return 0.0
    try:
        n = float(s)
    except ValueError:
        return 0.0
    return n if math.isfinite(n) else 0.0

def clamp_credito(raw: float) -> float:
    return min(max(raw, 0.0), float(LIMITE_CREDITO))

def normalize_parcelas(v: Any) -> List[str]:
    if isinstance(v, (list, tuple)) and len(v) == NUM_PARCELAS:
        return [s if s in STATUS_PARCELA else PENDENTE for s in v]
    return [PENDENTE] * NUM_PARCELAS

def brl(value: Any) -> str:
    try:
        num = float(value)
    except (TypeError, ValueError):
        num = 0.0
    if not math.isfinite(num):
        num = 0.0
    return "R$ " + f"{num:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")

# ---------- cálculo ----------
def compute_sale(
    cotas: Any,
    valor_unit: Any,
    valor_venda: Any,
    base_comissao: Any,
    taxa_pct: Any,
    parcelas: Any = None,
) -> Dict[str, Any]:
    """
    Crédito = cotas x valor unitário, limitado a LIMITE_CREDITO.
    Comissão = base x taxa%, onde a base é a venda ou o crédito.
    A comissão é paga em NUM_PARCELAS parcelas iguais.
    """
    n_cotas = max(0, math.floor(parse_num(cotas)))
    unit = max(0.0, parse_num(valor_unit))
    venda = max(0.0, parse_num(valor_venda))
    taxa = parse_num(taxa_pct)
    base_key = BASE_VENDA if base_comissao == BASE_VENDA else BASE_CREDITO

    credito_raw = n_cotas * unit
    credito = clamp_credito(credito_raw)
    limitado = credito_raw > LIMITE_CREDITO
    base = venda if base_key == BASE_VENDA else credito
    comissao_total = base * (taxa / 100)

    # estouro de float vira 0, como em parse_num
    if not math.isfinite(credito_raw):
        credito_raw = 0.0
    if not math.isfinite(comissao_total):
        comissao_total = 0.0

    sched = normalize_parcelas(parcelas)
    return {
        "cotas": n_cotas,
        "valorUnit": unit,
        "valorVenda": venda,
        "baseComissao": base_key,
        "taxaPct": taxa,
        "creditoRaw": credito_raw,
        "credito": credito,
        "limitado": limitado,
        "base": base,
        "comissaoTotal": comissao_total,
        "parcelaValor": comissao_total / NUM_PARCELAS,
        "parcelas": sched,
        "pagoCount": sched.count(PAGO),
        "pendenteCount": sched.count(PENDENTE),
        "atrasadoCount": sched.count(ATRASADO),
    }

def normalize_sale_input(body: Dict[str, Any], parcelas_atuais: Optional[List[str]] = None) -> Dict[str, Any]:
    parcelas = body.get("parcelas", parcelas_atuais)
    c = compute_sale(
        body.get("cotas"),
        body.get("valorUnit"),
        body.get("valorVenda"),
        body.get("baseComissao"),
        body.get("taxaPct"),
        parcelas,
    )
    return {
        "cliente": str(body.get("cliente") or "").strip(),
        "produto": str(body.get("produto") or "").strip(),
        "data": str(body.get("data") or "").strip(),
        "seguro": "Sim" if body.get("seguro") == "Sim" else "Não",
        "cotas": c["cotas"],
        "valorUnit": c["valorUnit"],
        "valorVenda": c["valorVenda"],
        "baseComissao": c["baseComissao"],
        "taxaPct": c["taxaPct"],
        "creditoRaw": c["creditoRaw"],
        "credito": c["credito"],
        "comissaoTotal": c["comissaoTotal"],
        "parcelas": c["parcelas"],
    }

def validate_sale_input(sale: Dict[str, Any]) -> None:
    if not sale["cliente"] or not sale["produto"] or not sale["data"]:
        raise ValidationError("Preencha cliente, produto e data.")
    if sale["cotas"] <= 0 or sale["valorUnit"] <= 0:
        raise ValidationError("Informe cotas e valor unitário (> 0).")
    credito_raw = sale["cotas"] * sale["valorUnit"]
    base = sale["valorVenda"] if sale["baseComissao"] == BASE_VENDA else clamp_credito(credito_raw)
    if not math.isfinite(credito_raw) or not math.isfinite(base * (sale["taxaPct"] / 100)):
        raise ValidationError("Valores fora do limite: revise cotas, valores e taxa.")

def sale_figures(r: Dict[str, Any]) -> Dict[str, Any]:
    return compute_sale(
        r.get("cotas"),
        r.get("valorUnit"),
        r.get("valorVenda"),
        r.get("baseComissao"),
        r.get("taxaPct"),
        r.get("parcelas"),
    )

# ---------- painel ----------
def summarize(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = pago = pendente = atrasado = 0.0
    n_pago = n_pendente = n_atrasado = 0

    for r in rows:
        c = sale_figures(r)
        total += c["comissaoTotal"]
        pago += c["parcelaValor"] * c["pagoCount"]
        pendente += c["parcelaValor"] * c["pendenteCount"]
        atrasado += c["parcelaValor"] * c["atrasadoCount"]
        n_pago += c["pagoCount"]
        n_pendente += c["pendenteCount"]
        n_atrasado += c["atrasadoCount"]

    vendas = len(rows)
    return {
        "vendas": vendas,
        "total": total,
        "pago": pago,
        "pendente": pendente,
        "atrasado": atrasado,
        "pagoPct": (pago / total * 100) if total > 0 else 0.0,
        "ticketMedio": (total / vendas) if vendas > 0 else 0.0,
        "parcelasTotal": vendas * NUM_PARCELAS,
        "parcelasPago": n_pago,
        "parcelasPendente": n_pendente,
        "parcelasAtrasado": n_atrasado,
    }

def ranking(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Agrupa por consultor; ordena por pago, depois total, depois nº de vendas."""
    by: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        key = r.get("consultorName") or "—"
        agg = by.setdefault(key, {"consultor": key, "vendas": 0, "total": 0.0, "pago": 0.0, "pendente": 0.0, "atrasado": 0.0})
        c = sale_figures(r)
        agg["vendas"] += 1
        agg["total"] += c["comissaoTotal"]
        agg["pago"] += c["parcelaValor"] * c["pagoCount"]
        agg["pendente"] += c["parcelaValor"] * c["pendenteCount"]
        agg["atrasado"] += c["parcelaValor"] * c["atrasadoCount"]

    return sorted(by.values(), key=lambda a: (-a["pago"], -a["total"], -a["vendas"]))
