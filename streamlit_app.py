from __future__ import annotations

import base64
import json
import os
from datetime import date, datetime, time, timezone

import requests
import streamlit as st

st.set_page_config(page_title="Clinic Booking", layout="wide")

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")



# JWT helpers (solo per UI, senza verifica firma)

def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return {}
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
        return payload if isinstance(payload, dict) else {}
    except (ValueError, UnicodeDecodeError):
        return {}


def jwt_is_expired(token: str) -> bool:
    exp = jwt_payload(token).get("exp")
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        return False

    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (exp_int - 5)


def jwt_username(token: str) -> str:
    p = jwt_payload(token)
    return str(p.get("username") or p.get("sub") or "utente")


def jwt_is_admin(token: str) -> bool:
    return jwt_payload(token).get("role") == "ADMIN"



# HTTP client (con JWT)

def _headers(token: str | None) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _unwrap(r: requests.Response) -> dict | list:
    if r.status_code == 401:
        raise PermissionError("401 Unauthorized (token non valido/scaduto oppure backend riavviato).")

    body = r.json()
    if not body.get("ok", False):
        err = body.get("error") or {}
        lines = [err.get("message") or f"Errore HTTP {r.status_code}"]
        lines += err.get("errors") or []
        lines += [c.get("message") for c in err.get("conflicts") or []]
        raise RuntimeError("\n".join(x for x in lines if x))
    return body.get("data")


def api_get(path: str, token: str | None = None, params: dict | None = None) -> dict | list:
    r = requests.get(f"{API_BASE}{path}", headers=_headers(token), params=params, timeout=10)
    return _unwrap(r)


def api_send(method: str, path: str, payload: dict | None, token: str | None = None) -> dict | list:
    r = requests.request(method, f"{API_BASE}{path}", headers=_headers(token), json=payload, timeout=10)
    return _unwrap(r)


def api_login(username: str, password: str) -> str:
    # OAuth2PasswordRequestForm => x-www-form-urlencoded
    r = requests.post(
        f"{API_BASE}/api/auth/login",
        data={"username": username, "password": password},
        timeout=10,
    )
    r.raise_for_status()
    return r.json()["access_token"]


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str) and len(token) > 0


def do_logout() -> None:
    st.session_state.pop("token", None)
    st.session_state.pop("auth_error", None)
    st.rerun()



# Sidebar login

with st.sidebar:
    st.header("Accesso")

    if not is_logged_in():
        u = st.text_input("Username", key="login_user")
        p = st.text_input("Password", type="password", key="login_pass")

        if st.button("Login", key="login_btn"):
            try:
                st.session_state["token"] = api_login(u.strip().lower(), p)
                st.session_state.pop("auth_error", None)
                st.rerun()
            except requests.HTTPError:
                st.error("Credenziali non valide.")
            except requests.RequestException as e:
                st.error(str(e))
    else:
        st.write(f"Utente: **{jwt_username(st.session_state['token'])}**")

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")



# UI

st.title("Prenotazione dispositivi (API REST + JWT + Streamlit)")

if not is_logged_in():
    st.info("Effettua il login dalla sidebar.")
    st.stop()

token = st.session_state["token"]
if jwt_is_expired(token):
    st.error("Sessione scaduta. Premi Logout e rifai login.")
    st.stop()

tab1, tab2, tab3, tab4 = st.tabs(["Prenotazioni", "Agenda", "Dispositivi", "Clienti"])


def _show_error(e: Exception) -> None:
    if isinstance(e, PermissionError):
        st.session_state["auth_error"] = str(e)
        st.error("Sessione non valida. Premi Logout e rifai login.")
    else:
        st.error(str(e))


def _slot_payload(rows: list[dict], giorno: date) -> list[dict]:
    return [
        {
            "device_name": r["device"],
            "start_time": datetime.combine(giorno, r["start"]).isoformat(),
            "end_time": datetime.combine(giorno, r["end"]).isoformat(),
        }
        for r in rows
    ]



# TAB 1 - Prenotazioni

with tab1:
    st.subheader("Nuovo appuntamento")

    try:
        devices = api_get("/api/devices", token=token)
        customers = api_get("/api/customers", token=token)
    except Exception as e:
        _show_error(e)
        st.stop()

    if not devices or not customers:
        st.warning("Servono almeno un dispositivo e un cliente.")
    else:
        customer = st.selectbox(
            "Cliente",
            options=customers,
            format_func=lambda c: f"{c['full_name']} ({c.get('phone') or '-'})",
            key="pren_cliente",
        )
        giorno = st.date_input("Data", value=date.today(), key="pren_data")
        n_slots = st.number_input("Numero dispositivi", min_value=1, max_value=5, value=1, key="pren_n")

        rows = []
        for i in range(int(n_slots)):
            c1, c2, c3 = st.columns(3)
            device = c1.selectbox(
                f"Dispositivo {i + 1}",
                options=[d["name"] for d in devices],
                key=f"pren_dev_{i}",
            )
            start = c2.time_input("Inizio", value=time(10, 0), key=f"pren_start_{i}")
            end = c3.time_input("Fine", value=time(10, 30), key=f"pren_end_{i}")
            rows.append({"device": device, "start": start, "end": end})

        note = st.text_area("Note (opzionale)", height=80, key="pren_note")
        slots = _slot_payload(rows, giorno)

        colA, colB = st.columns(2)
        if colA.button("Verifica disponibilità", key="pren_check"):
            try:
                res = api_send(
                    "POST",
                    "/api/appointments/check-availability",
                    {"devices": slots, "customer_id": customer["id"]},
                    token=token,
                )
                if res["is_available"]:
                    st.success("Disponibile.")
                else:
                    for c in res["conflicts"]:
                        st.warning(c["message"])
            except Exception as e:
                _show_error(e)

        if colB.button("Conferma prenotazione", key="pren_submit"):
            try:
                res = api_send(
                    "POST",
                    "/api/appointments",
                    {"customer_id": customer["id"], "devices": slots, "notes": note or None},
                    token=token,
                )
                st.success(f"Appuntamento confermato (ID: {res['id']})")
            except Exception as e:
                _show_error(e)



# TAB 2 - Agenda

with tab2:
    st.subheader("Agenda giornaliera")

    giorno_agenda = st.date_input("Giorno", value=date.today(), key="agenda_giorno")

    try:
        items = api_get("/api/appointments/agenda", token=token, params={"giorno": giorno_agenda.isoformat()})
    except Exception as e:
        _show_error(e)
        items = []

    if not items:
        st.info("Nessun appuntamento per questo giorno.")

    for a in items:
        devices_txt = ", ".join(
            f"{d['device_name']} {d['start_time'][11:16]}-{d['end_time'][11:16]}" for d in a["devices"]
        )
        c1, c2, c3 = st.columns([6, 1, 1])
        c1.write(
            f"**{a['start_time'][11:16]} - {a['end_time'][11:16]}** | {a['customer_name']} | "
            f"{devices_txt} | Stato: {a['status']}"
        )
        if a["status"] in ("scheduled", "in_progress"):
            if c2.button("Completa", key=f"done_{a['id']}"):
                try:
                    api_send("PATCH", f"/api/appointments/{a['id']}/complete", None, token=token)
                    st.rerun()
                except Exception as e:
                    _show_error(e)
            if c3.button("Annulla", key=f"cancel_{a['id']}"):
                try:
                    api_send("POST", f"/api/appointments/{a['id']}/cancel", None, token=token)
                    st.rerun()
                except Exception as e:
                    _show_error(e)



# TAB 3 - Dispositivi

with tab3:
    st.subheader("Dispositivi")

    if jwt_is_admin(token):
        with st.expander("Nuovo dispositivo"):
            nome = st.text_input("Nome (case-sensitive)", key="dev_nome")
            capacita = st.number_input("Capacità", min_value=1, value=1, key="dev_cap")
            if st.button("Crea dispositivo", key="dev_submit"):
                try:
                    api_send("POST", "/api/devices", {"name": nome.strip(), "capacity": int(capacita)}, token=token)
                    st.success("Dispositivo creato.")
                except Exception as e:
                    _show_error(e)

    try:
        for d in api_get("/api/devices", token=token):
            st.write(f"- **{d['name']}** | capacità {d['capacity']}")
    except Exception as e:
        _show_error(e)



# TAB 4 - Clienti

with tab4:
    st.subheader("Clienti")

    with st.expander("Nuovo cliente"):
        full_name = st.text_input("Nome e cognome", key="cli_nome")
        tel = st.text_input("Telefono (opzionale)", key="cli_tel")
        if st.button("Crea cliente", key="cli_submit"):
            if not full_name.strip():
                st.error("Il nome è obbligatorio.")
            else:
                try:
                    res = api_send(
                        "POST", "/api/customers", {"full_name": full_name.strip(), "phone": tel.strip() or None}, token=token
                    )
                    st.success(f"Cliente creato: {res['id']}")
                except Exception as e:
                    _show_error(e)

    try:
        clienti = api_get("/api/customers", token=token)
        if not clienti:
            st.info("Nessun cliente presente.")
        for c in clienti:
            st.write(f"- {c['full_name']} | {c.get('phone') or '-'}")
    except Exception as e:
        _show_error(e)
