import logging
import secrets
import uuid
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import Blueprint, Flask, current_app, jsonify, redirect, render_template_string, request, url_for
from flask_login import LoginManager, current_user, login_required
from werkzeug.security import check_password_hash, generate_password_hash

from comissao import (
    LIMITE_CREDITO,
    NUM_PARCELAS,
    brl,
    compute_sale,
    normalize_sale_input,
    ranking,
    sale_figures,
    summarize,
    validate_sale_input,
)
from config import Config, load_config
from errors import AppError, Forbidden, InvalidCredentials, StorageError, Unauthenticated
from sessions import Identity, MemorySessionStore, SessionStore
from store import ADMIN, JsonStore

COOKIE_NAME = "sid"
EXT_KEY = "comissoes"

# ---------- helpers ----------
def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def store() -> JsonStore:
    return current_app.extensions[EXT_KEY]["store"]

def sessions() -> SessionStore:
    return current_app.extensions[EXT_KEY]["sessions"]

def app_config() -> Config:
    return current_app.extensions[EXT_KEY]["config"]

def json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}

def visible_sales() -> List[Dict[str, Any]]:
    return store().list_sales_for_owner(current_user.role, current_user.user_id)

# ---------- Auth ----------
def is_admin() -> bool:
    return bool(getattr(current_user, "is_admin", False))

def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not is_admin():
            current_app.logger.warning("admin-only %s refused for %s", request.path, current_user.username)
            raise Forbidden()
        return view(*args, **kwargs)
    return wrapped

def authorize_owner(sale: Dict[str, Any], message: str) -> None:
    if is_admin() or sale.get("userId") == current_user.user_id:
        return
    current_app.logger.warning("%s refused: sale %s belongs to %s, caller %s",
                               request.method, sale.get("id"), sale.get("userId"), current_user.user_id)
    raise Forbidden(message)

# ---------- API ----------
api = Blueprint("api", __name__, url_prefix="/api")

@api.route("/login", methods=["POST"])
def login():
    body = json_body()
    u = str(body.get("username") or "").strip().lower()
    p = str(body.get("password") or "")
    user = store().find_user_by_username(u)
    # usuário inexistente confere contra um hash fixo para não denunciar pelo tempo
    pw_hash = user.get("passwordHash", "") if user else current_app.extensions[EXT_KEY]["dummy_hash"]
    password_ok = check_password_hash(pw_hash, p)
    if not user or not password_ok:
        current_app.logger.info("login failed for %r", u)
        raise InvalidCredentials()

    identity = Identity(user_id=user["id"], role=user["role"], name=user["displayName"], username=user["username"])
    token = sessions().create(identity)
    current_app.logger.info("login %s (%s)", identity.username, identity.role)

    resp = jsonify({"ok": True, "role": identity.role, "name": identity.name, "username": identity.username})
    resp.set_cookie(COOKIE_NAME, token, httponly=True, samesite="Lax", secure=app_config().cookie_secure)
    return resp

@api.route("/logout", methods=["POST"])
@login_required
def logout():
    sessions().destroy(request.cookies.get(COOKIE_NAME))
    current_app.logger.info("logout %s", current_user.username)
    resp = jsonify({"ok": True})
    resp.delete_cookie(COOKIE_NAME, httponly=True, samesite="Lax", secure=app_config().cookie_secure)
    return resp

@api.route("/me")
@login_required
def me():
    return jsonify({"ok": True, **current_user.to_dict()})

@api.route("/users")
@login_required
@admin_required
def users():
    return jsonify({"ok": True, "users": store().list_users_redacted()})

@api.route("/sales")
@login_required
def list_sales():
    return jsonify({"ok": True, "rows": visible_sales()})

@api.route("/sales", methods=["POST"])
@login_required
def create_sale():
    body = json_body()
    sale_in = normalize_sale_input(body)
    validate_sale_input(sale_in)

    user_id = current_user.user_id
    consultor = current_user.name
    if is_admin():
        user_id = str(body.get("userId") or "").strip() or current_user.user_id
        consultor = str(body.get("consultorName") or "").strip()
        if not consultor:
            owner = store().find_user_by_id(user_id)
            consultor = owner["displayName"] if owner else current_user.name

    ts = now_iso()
    sale = {
        "id": str(uuid.uuid4()),
        "userId": user_id,
        "consultorName": consultor,
        **sale_in,
        "createdAt": ts,
        "updatedAt": ts,
    }
    store().create_sale(sale)
    current_app.logger.info("sale %s created by %s for %s", sale["id"], current_user.username, user_id)
    return jsonify({"ok": True, "id": sale["id"]})

@api.route("/sales/<sale_id>", methods=["PUT"])
@login_required
def update_sale(sale_id: str):
    body = json_body()
    validate_sale_input(normalize_sale_input(body))

    def apply(current: Dict[str, Any]) -> Dict[str, Any]:
        authorize_owner(current, "Você não pode editar venda de outro consultor")
        sale_in = normalize_sale_input(body, current.get("parcelas"))

        if is_admin():
            user_id = str(body.get("userId") or "").strip() or current.get("userId")
            consultor = str(body.get("consultorName") or "").strip() or current.get("consultorName")
        else:
            user_id = current.get("userId")
            consultor = current_user.name

        return {
            **current,
            "userId": user_id,
            "consultorName": consultor,
            **sale_in,
            "updatedAt": now_iso(),
        }

    store().update_sale_by_id(sale_id, apply)
    current_app.logger.info("sale %s updated by %s", sale_id, current_user.username)
    return jsonify({"ok": True})

@api.route("/sales/<sale_id>", methods=["DELETE"])
@login_required
def delete_sale(sale_id: str):
    store().delete_sale_by_id(
        sale_id,
        check=lambda current: authorize_owner(current, "Você não pode excluir venda de outro consultor"),
    )
    current_app.logger.info("sale %s deleted by %s", sale_id, current_user.username)
    return jsonify({"ok": True})

@api.route("/sales/preview", methods=["POST"])
@login_required
def preview_sale():
    body = json_body()
    c = compute_sale(
        body.get("cotas"),
        body.get("valorUnit"),
        body.get("valorVenda"),
        body.get("baseComissao"),
        body.get("taxaPct"),
        body.get("parcelas"),
    )
    return jsonify({"ok": True, **c})

@api.route("/summary")
@login_required
def summary():
    rows = visible_sales()
    return jsonify({"ok": True, "kpis": summarize(rows), "ranking": ranking(rows)})

# ---------- UI ----------
BASE = """
<!doctype html>
<html lang="pt-br">
<head>
  <meta charset="utf-8"/>
  <title>Comissões</title>
  <style>
    body { font-family: Arial, sans-serif; margin: 24px; }
    .top { display:flex; justify-content:space-between; align-items:center; margin-bottom:16px; gap:16px; }
    .muted { color:#666; font-size: 12px; }
    .card { border:1px solid #ddd; padding:12px; border-radius:10px; margin-bottom:16px; }
    .btn { padding:10px 14px; background:#1F4E79; color:#fff; border:none; border-radius:8px; cursor:pointer; }
    .btn2 { padding:6px 10px; background:#666; color:#fff; border:none; border-radius:8px; cursor:pointer; }
    table { border-collapse: collapse; width: 100%; }
    th, td { border: 1px solid #ddd; padding: 8px; font-size: 13px; }
    th { background:#1F4E79; color:#fff; position: sticky; top: 0; }
    input, select { width:100%; padding:6px; box-sizing:border-box; }
    .grid { display:grid; grid-template-columns: repeat(4, 1fr); gap: 10px; }
    .good { color:#0a7; font-weight:bold; }
    .warn { color:#b80; font-weight:bold; }
    .bad { color:#c00; font-weight:bold; }
    .flash { background:#fff2cc; padding:10px; border-radius:8px; border:1px solid #f0d37a; margin-bottom:10px; display:none; }
  </style>
</head>
<body>
  <div class="top">
    <div>
      <div><b>Comissões</b></div>
      <div class="muted">Crédito limitado a {{ limite|brl }} por venda. Comissão paga em {{ n_parcelas }} parcelas.</div>
    </div>
    {% if current_user.is_authenticated %}
      <div>
        <div class="muted">Logado como: <b>{{ current_user.name }}</b> • Perfil: {{ current_user.role }}</div>
        <div style="text-align:right;margin-top:6px;"><button class="btn2" id="btnLogout">Sair</button></div>
      </div>
    {% endif %}
  </div>

  {{ content|safe }}

  <script>
  async function api(path, opts){
    const res = await fetch(path, opts);
    const data = await res.json().catch(()=>({}));
    if(!res.ok) throw new Error(data.error || "Erro");
    return data;
  }
  function jsonOpts(method, payload){
    return { method, headers:{ "Content-Type":"application/json" }, body: JSON.stringify(payload) };
  }
  const btnLogout = document.getElementById("btnLogout");
  if(btnLogout) btnLogout.addEventListener("click", async ()=>{
    try{ await api("/api/logout", { method:"POST" }); } catch(e){}
    window.location.href = "/";
  });
  </script>
  {{ scripts|safe }}
</body>
</html>
"""

LOGIN_TPL = """
<div class="card" style="max-width:420px;">
  <form id="formLogin">
    <div style="margin-bottom:10px;"><b>Entrar</b></div>
    <div class="flash" id="loginErr"></div>
    <div style="margin-bottom:10px;">
      <label>Usuário</label>
      <input name="username" required />
    </div>
    <div style="margin-bottom:10px;">
      <label>Senha</label>
      <input name="password" type="password" required />
    </div>
    <button class="btn" type="submit">Entrar</button>
  </form>
</div>
"""

LOGIN_JS = """
<script>
document.getElementById("formLogin").addEventListener("submit", async (e)=>{
  e.preventDefault();
  const fd = new FormData(e.target);
  const err = document.getElementById("loginErr");
  try{
    await api("/api/login", jsonOpts("POST", { username: fd.get("username"), password: fd.get("password") }));
    window.location.href = "/dashboard";
  }catch(ex){
    err.textContent = ex.message;
    err.style.display = "block";
  }
});
</script>
"""

DASH_TPL = """
<div class="grid">
  <div class="card">
    <div class="muted">Comissão total</div>
    <div><b>{{ k.total|brl }}</b></div>
    <div class="muted">{{ k.vendas }} venda(s) • {{ k.parcelasTotal }} parcela(s) no total</div>
  </div>
  <div class="card">
    <div class="muted">Pago</div>
    <div class="good">{{ k.pago|brl }}</div>
    <div class="muted">{{ "%.2f"|format(k.pagoPct) }}% do total • {{ k.parcelasPago }}/{{ k.parcelasTotal }} parcelas pagas</div>
  </div>
  <div class="card">
    <div class="muted">Pendente</div>
    <div class="warn">{{ k.pendente|brl }}</div>
    <div class="muted">{{ k.parcelasPendente }}/{{ k.parcelasTotal }} parcelas pendentes</div>
  </div>
  <div class="card">
    <div class="muted">Atrasado</div>
    <div class="bad">{{ k.atrasado|brl }}</div>
    <div class="muted">{{ k.parcelasAtrasado }}/{{ k.parcelasTotal }} parcelas atrasadas • ticket médio {{ k.ticketMedio|brl }}</div>
  </div>
</div>

<div class="card">
  <b>Resumo rápido</b>
  <div class="grid" style="margin-top:8px;">
    <div>
      <div class="muted">Destaque</div>
      {% if rank %}
        <div><b>{{ rank[0].consultor }}</b></div>
        <div class="muted">Pago: {{ rank[0].pago|brl }} • Total: {{ rank[0].total|brl }} • Vendas: {{ rank[0].vendas }}</div>
      {% else %}
        <div>—</div>
      {% endif %}
    </div>
    <div>
      <div class="muted">Parcelas</div>
      <div>{{ k.parcelasTotal }} (P: {{ k.parcelasPago }} • Pen: {{ k.parcelasPendente }} • Atr: {{ k.parcelasAtrasado }})</div>
    </div>
    <div style="grid-column: span 2;">
      <div class="muted">Mix</div>
      <div>Pago: {{ k.pago|brl }} • Pendente: {{ k.pendente|brl }} • Atrasado: {{ k.atrasado|brl }} • Comissão total: {{ k.total|brl }}</div>
    </div>
  </div>
</div>

<div class="card">
  <b>Nova venda</b>
  <div class="flash" id="addErr"></div>
  <form id="formAdd" class="grid" style="margin-top:8px;">
    {% if is_admin %}
      <div>
        <label>Consultor</label>
        <select name="userId">
          {% for u in users %}
            <option value="{{ u.id }}" data-name="{{ u.displayName }}">{{ u.displayName }} ({{ u.username }})</option>
          {% endfor %}
        </select>
      </div>
    {% endif %}
    <div><label>Cliente</label><input name="cliente" required></div>
    <div><label>Produto</label><input name="produto" required></div>
    <div><label>Data</label><input name="data" type="date" required></div>
    <div>
      <label>Seguro</label>
      <select name="seguro"><option>Não</option><option>Sim</option></select>
    </div>
    <div><label>Cotas</label><input name="cotas" inputmode="numeric"></div>
    <div><label>Valor unitário</label><input name="valorUnit" placeholder="1.000,00"></div>
    <div><label>Valor da venda</label><input name="valorVenda" placeholder="0,00"></div>
    <div>
      <label>Base da comissão</label>
      <select name="baseComissao"><option value="credito">Crédito</option><option value="venda">Venda</option></select>
    </div>
    <div><label>Taxa (%)</label><input name="taxaPct" placeholder="5"></div>
    <div>
      <div class="muted">Crédito: <b id="pvCredito">—</b></div>
      <div class="warn" id="pvWarn" style="display:none;"></div>
      <div class="muted">Comissão: <b id="pvComissao">—</b> • Parcela: <b id="pvParcela">—</b></div>
    </div>
    <div><button class="btn" type="submit">Salvar</button></div>
  </form>
</div>

<div class="card">
  <b>Ranking</b>
  <table style="margin-top:8px;">
    <tr><th>#</th><th>Consultor</th><th>Vendas</th><th>Total</th><th>Pago</th><th>Pendente</th><th>Atrasado</th></tr>
    {% for x in rank %}
      <tr>
        <td><b>{{ loop.index }}</b></td>
        <td><b>{{ x.consultor }}</b></td>
        <td>{{ x.vendas }}</td>
        <td><b>{{ x.total|brl }}</b></td>
        <td class="good">{{ x.pago|brl }}</td>
        <td class="warn">{{ x.pendente|brl }}</td>
        <td class="bad">{{ x.atrasado|brl }}</td>
      </tr>
    {% else %}
      <tr><td colspan="7" class="muted" style="text-align:center;">Sem dados para ranking.</td></tr>
    {% endfor %}
  </table>
</div>

<div class="card">
  <b>Vendas</b>
  <table style="margin-top:8px;">
    <tr>
      <th>Consultor</th><th>Cliente</th><th>Produto</th><th>Data</th><th>Seguro</th><th>Cotas</th>
      <th>Valor unit.</th><th>Crédito</th><th>Base</th><th>Taxa</th><th>Comissão</th><th>Parcelas</th><th></th>
    </tr>
    {% for r in rows %}
      <tr>
        <td><b>{{ r.consultorName or "—" }}</b></td>
        <td>{{ r.cliente }}</td>
        <td>{{ r.produto }}</td>
        <td>{{ r.data }}</td>
        <td>{{ r.seguro }}</td>
        <td><b>{{ r.cotas }}</b></td>
        <td>{{ r.valorUnit|brl }}</td>
        <td><b>{{ r.c.credito|brl }}</b></td>
        <td>{{ "Venda" if r.baseComissao == "venda" else "Crédito" }}</td>
        <td>{{ "%.2f"|format(r.taxaPct) }}%</td>
        <td><b>{{ r.c.comissaoTotal|brl }}</b></td>
        <td class="muted">P: {{ r.c.pagoCount }} • Pen: {{ r.c.pendenteCount }} • Atr: {{ r.c.atrasadoCount }}</td>
        <td><button class="btn2 del" data-id="{{ r.id }}">Excluir</button></td>
      </tr>
    {% else %}
      <tr><td colspan="13" class="muted" style="text-align:center;">Sem vendas ainda.</td></tr>
    {% endfor %}
  </table>
</div>
"""

DASH_JS = """
<script>
const form = document.getElementById("formAdd");
const fmt = (n)=> new Intl.NumberFormat("pt-BR",{style:"currency",currency:"BRL"}).format(Number(n)||0);

function payloadFrom(f){
  const fd = new FormData(f);
  const p = {};
  for(const k of ["cliente","produto","data","seguro","cotas","valorUnit","valorVenda","baseComissao","taxaPct"]) p[k] = fd.get(k);
  const sel = f.querySelector("select[name=userId]");
  if(sel){
    p.userId = sel.value;
    p.consultorName = sel.options[sel.selectedIndex].dataset.name;
  }
  return p;
}

async function updatePreview(){
  try{
    const c = await api("/api/sales/preview", jsonOpts("POST", payloadFrom(form)));
    document.getElementById("pvCredito").textContent = c.creditoRaw ? fmt(c.credito) : "—";
    const warn = document.getElementById("pvWarn");
    warn.style.display = c.limitado ? "block" : "none";
    warn.textContent = c.limitado ? `Crédito bruto ${fmt(c.creditoRaw)} passou do limite. Foi ajustado para ${fmt(c.credito)}.` : "";
    document.getElementById("pvComissao").textContent = c.comissaoTotal ? fmt(c.comissaoTotal) : "—";
    document.getElementById("pvParcela").textContent = c.comissaoTotal ? fmt(c.parcelaValor) : "—";
  }catch(e){}
}
form.addEventListener("input", updatePreview);
form.addEventListener("change", updatePreview);

form.addEventListener("submit", async (e)=>{
  e.preventDefault();
  const err = document.getElementById("addErr");
  err.style.display = "none";
  try{
    await api("/api/sales", jsonOpts("POST", payloadFrom(form)));
    window.location.reload();
  }catch(ex){
    err.textContent = ex.message;
    err.style.display = "block";
  }
});

document.querySelectorAll("button.del").forEach(b => b.addEventListener("click", async ()=>{
  if(!confirm("Excluir esta venda?")) return;
  try{
    await api(`/api/sales/${encodeURIComponent(b.dataset.id)}`, { method:"DELETE" });
    window.location.reload();
  }catch(ex){
    alert(ex.message);
  }
}));
</script>
"""

def render_page(content: str, scripts: str = "") -> str:
    return render_template_string(BASE, content=content, scripts=scripts, limite=LIMITE_CREDITO, n_parcelas=NUM_PARCELAS)

pages = Blueprint("pages", __name__)

@pages.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for("pages.dashboard"))
    return render_page(render_template_string(LOGIN_TPL), LOGIN_JS)

@pages.route("/dashboard")
@login_required
def dashboard():
    rows = visible_sales()
    out = [{**r, "c": sale_figures(r)} for r in rows]
    users_list = []
    if is_admin():
        users_list = [u for u in store().list_users_redacted() if u.get("role") != ADMIN]
    content = render_template_string(
        DASH_TPL,
        rows=out,
        k=summarize(rows),
        rank=ranking(rows),
        is_admin=is_admin(),
        users=users_list,
    )
    return render_page(content, DASH_JS)

# ---------- App ----------
def create_app(config: Optional[Config] = None, session_store: Optional[SessionStore] = None) -> Flask:
    cfg = config or load_config()

    app = Flask(__name__)
    app.secret_key = cfg.secret_key
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=cfg.cookie_secure,
        MAX_CONTENT_LENGTH=1024 * 1024,
    )
    app.add_template_filter(brl, "brl")

    data = JsonStore(cfg.data_file)
    data.seed_users_if_needed(cfg.admin_password, cfg.consultor_password)
    app.extensions[EXT_KEY] = {
        "store": data,
        "sessions": session_store if session_store is not None else MemorySessionStore(),
        "config": cfg,
        "dummy_hash": generate_password_hash(secrets.token_hex(16)),
    }

    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_from_cookie(req):
        return app.extensions[EXT_KEY]["sessions"].resolve(req.cookies.get(COOKIE_NAME))

    @login_manager.unauthorized_handler
    def unauthorized():
        if request.path.startswith("/api/"):
            raise Unauthenticated()
        return redirect(url_for("pages.index"))

    @app.errorhandler(AppError)
    def handle_app_error(e: AppError):
        if isinstance(e, StorageError):
            app.logger.exception("storage failure on %s %s", request.method, request.path)
        return jsonify({"ok": False, "error": e.message}), e.status

    @app.after_request
    def security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        resp.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
        return resp

    app.register_blueprint(api)
    app.register_blueprint(pages)
    return app

# ---------- Start ----------
def main():
    cfg = load_config()
    logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app(cfg)
    app.run(host=cfg.host, port=cfg.port)

if __name__ == "__main__":
    main()
