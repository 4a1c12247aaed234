from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

# app.py
import base64
import os

import requests
import streamlit as st

st.set_page_config(page_title="PDF Auto-Fill", layout="wide")

BACKEND = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")
MANUAL_KEY = "__MANUAL__"
UNMAPPED = ""

STEPS = ["upload", "templates", "mapping", "download"]

if "step" not in st.session_state:
    st.session_state.step = "upload"


def go(step: str):
    st.session_state.step = step


def reset():
    for key in ("session_id", "data", "line_items_text", "run", "documents"):
        st.session_state.pop(key, None)
    go("upload")


def api(method: str, path: str, **kwargs):
    r = requests.request(method, f"{BACKEND}{path}", timeout=180, **kwargs)
    if not r.ok:
        try:
            detail = r.json().get("detail", r.text)
        except ValueError:
            detail = r.text
        st.error(detail)
        return None
    return r.json()


st.sidebar.title("PDF Auto-Fill")
st.sidebar.write(" → ".join(s.title() if s == st.session_state.step else s for s in STEPS))
st.sidebar.button("Start over", on_click=reset)

# ------------- Template library -------------
with st.sidebar.expander("Template library"):
    upload = st.file_uploader("Add a fillable PDF", type=["pdf"], key="template_upload")
    name = st.text_input("Template name", value=upload.name.rsplit(".", 1)[0] if upload else "")
    if upload and st.button("Save template"):
        body = {"name": name, "pdf_base64": base64.b64encode(upload.getvalue()).decode("ascii")}
        if api("POST", "/templates", json=body):
            st.success(f"Saved '{name}'")
    listing = api("GET", "/templates") or {"templates": []}
    for t in listing["templates"]:
        cols = st.columns([3, 1])
        cols[0].write(t["name"])
        if cols[1].button("Delete", key=f"del-{t['id']}"):
            api("DELETE", f"/templates/{t['id']}")
            st.rerun()

# ------------- Step 1: source document -------------
if st.session_state.step == "upload":
    st.title("Paperwork, solved.")
    st.write("Upload an invoice, estimate or work order (JPG, PNG or PDF).")
    source = st.file_uploader("Source document", type=["pdf", "png", "jpg", "jpeg"])
    if source and st.button("Extract data", type="primary"):
        with st.spinner("Reading document..."):
            result = api(
                "POST",
                "/extract",
                json={
                    "document_base64": base64.b64encode(source.getvalue()).decode("ascii"),
                    "mime_type": source.type or "application/pdf",
                },
            )
        if result:
            st.session_state.session_id = result["session_id"]
            st.session_state.data = result["data"]
            st.session_state.line_items_text = result["line_items_text"]
            go("templates")
            st.rerun()

# ------------- Step 2: template selection -------------
elif st.session_state.step == "templates":
    st.header("Select templates")
    listing = api("GET", "/templates") or {"templates": []}
    options = {t["id"]: t["name"] for t in listing["templates"]}
    if not options:
        st.info("No templates yet. Add one in the template library.")
    chosen = st.multiselect("Templates to fill", list(options), format_func=lambda i: options[i])
    if chosen and st.button("Continue", type="primary"):
        with st.spinner("Mapping fields..."):
            run = api(
                "POST",
                "/runs/prepare",
                json={"session_id": st.session_state.session_id, "template_ids": chosen},
            )
        if run:
            st.session_state.run = run
            go("mapping")
            st.rerun()

# ------------- Step 3: review data + mapping -------------
elif st.session_state.step == "mapping":
    run = st.session_state.run
    data = st.session_state.data
    left, right = st.columns(2)

    with left:
        st.subheader("Source data")
        for key in run["data_keys"]:
            if key == "lineItems":
                continue
            value = data.get(key)
            data[key] = st.text_input(key, value="" if value is None else str(value), key=f"data-{key}")
        st.caption("Line items")
        st.code(st.session_state.get("line_items_text", ""))

    mappings = {}
    patterns = {}
    with right:
        tabs = st.tabs([t["template_name"] for t in run["templates"]])
        for tab, config in zip(tabs, run["templates"]):
            tid = config["template_id"]
            with tab:
                st.caption(f"Mapping source: {config['mapping_source']}")
                patterns[tid] = st.text_input("Filename pattern", value=config["filename_pattern"], key=f"pat-{tid}")
                preview = api(
                    "POST",
                    "/filename/preview",
                    json={"pattern": patterns[tid], "template_name": config["template_name"], "data": data},
                )
                if preview:
                    st.caption(f"→ {preview['filename']}")

                current = {m["field_name"]: m for m in config["mappings"]}
                choices = [UNMAPPED, MANUAL_KEY] + run["data_keys"]
                entries = []
                for field in config["fields"]:
                    if field["kind"] == "unknown":
                        continue
                    existing = current.get(field["name"], {})
                    source = st.selectbox(
                        field["name"],
                        choices,
                        index=choices.index(existing.get("source_key", UNMAPPED))
                        if existing.get("source_key", UNMAPPED) in choices
                        else 0,
                        format_func=lambda c: {UNMAPPED: "-- not mapped --", MANUAL_KEY: "Custom text"}.get(c, c),
                        key=f"map-{tid}-{field['name']}",
                    )
                    if source == UNMAPPED:
                        continue
                    manual = None
                    if source == MANUAL_KEY:
                        manual = st.text_input(
                            "Custom text",
                            value=existing.get("manual_value") or "",
                            key=f"manual-{tid}-{field['name']}",
                        )
                    entries.append({"field_name": field["name"], "source_key": source, "manual_value": manual})
                mappings[tid] = entries

    cols = st.columns(2)
    cols[0].button("Back", on_click=go, args=("templates",))
    if cols[1].button("Generate PDFs", type="primary"):
        with st.spinner("Filling forms..."):
            result = api(
                "POST",
                "/runs/generate",
                json={
                    "session_id": st.session_state.session_id,
                    "data": data,
                    "mappings": mappings,
                    "patterns": patterns,
                },
            )
        if result:
            st.session_state.documents = result["documents"]
            go("download")
            st.rerun()

# ------------- Step 4: download -------------
elif st.session_state.step == "download":
    st.header("Your documents")
    for doc in st.session_state.get("documents", []):
        cols = st.columns([3, 1, 1])
        cols[0].write(doc["filename"])
        cols[1].download_button(
            "PDF",
            data=base64.b64decode(doc["pdf_base64"]),
            file_name=doc["filename"],
            mime="application/pdf",
            key=f"pdf-{doc['pdf_id']}",
        )
        image = requests.get(f"{BACKEND}/documents/{doc['pdf_id']}/preview", params={"format": "jpg"}, timeout=60)
        if image.ok:
            cols[2].download_button(
                "JPG",
                data=image.content,
                file_name=doc["filename"].replace(".pdf", ".jpg"),
                mime="image/jpeg",
                key=f"jpg-{doc['pdf_id']}",
            )
            st.image(image.content, width=320)
