"""Page-text markers and the default probe/action script tables."""

# Off-target URLs containing any of these are a login redirect, not a wrong page.
LOGIN_URL_MARKERS = [
    "accounts.google.com",
    "/ServiceLogin",
    "/signin",
]

# ── Page Text Markers ────────────────────────────────────────────────────────

# Shown in place of an answer when generation was aborted server-side.
FATAL_RESPONSE_PHRASES = [
    "대답이 중지되었습니다",
    "You stopped this response",
    "Response stopped",
]

RATE_LIMIT_PHRASES = [
    "요청이 너무 많습니다",
    "Too many requests",
    "reached your limit",
]

SESSION_EXPIRED_PHRASES = [
    "세션이 만료",
    "Session expired",
    "Sign in again",
]

# ── Probe Scripts ────────────────────────────────────────────────────────────
#
# Probes are read-only and return plain values (bool, str, int).
# Every script is a JS function source evaluated with Page.evaluate.

SCRIPT_TABLE_VERSION = "2025.2"

PROBE_SCRIPTS = {
    "input_ready": """() => !!(
        document.querySelector('.ql-editor') ||
        document.querySelector('div[contenteditable="true"]') ||
        document.querySelector('rich-textarea .ql-editor')
    )""",

    "generating": """() => {
        const sendBtn = document.querySelector('.send-button');
        if (sendBtn && sendBtn.classList.contains('stop')) return true;
        const lastMarkdown = [...document.querySelectorAll('.markdown')].pop();
        if (lastMarkdown && lastMarkdown.getAttribute('aria-busy') === 'true') return true;
        const stopBtn = document.querySelector(
            "button[aria-label*='중지'], button[aria-label*='Stop']"
        );
        return !!(stopBtn && stopBtn.offsetParent !== null && !stopBtn.disabled);
    }""",

    "logged_in": """() => {
        const loginBtn = document.querySelector(
            "button[aria-label*='로그인'], button[aria-label*='Sign in'], a[href*='ServiceLogin']"
        );
        return !(loginBtn && loginBtn.offsetParent !== null);
    }""",

    "error_text": """() => {
        const visibleText = (el) =>
            el && el.offsetParent !== null ? (el.innerText || '').trim() : '';
        const snackbar = document.querySelector(
            'm-snackbar, snack-bar, .snackbar, .cdk-overlay-container .error'
        );
        let txt = visibleText(snackbar);
        if (txt) return txt.substring(0, 100);
        const alert = document.querySelector('[role="alert"], .simple-message.error');
        txt = visibleText(alert);
        if (txt) return txt.substring(0, 100);
        const err = document.querySelector('[class*="error"]');
        txt = visibleText(err);
        if (txt.length > 5 && (txt.includes('문제가 발생') ||
                               txt.includes('Something went wrong'))) {
            return txt.substring(0, 100);
        }
        return '';
    }""",

    "image_capability": """() => !!document.querySelector(
        "button.upload-card-button, button[aria-label*='업로드'], button[aria-label*='upload' i]"
    )""",

    "response_text": """() => {
        const responses = document.querySelectorAll(
            'message-content.model-response-text, .model-response-text'
        );
        if (responses.length === 0) return '';
        return (responses[responses.length - 1].innerText || '').trim();
    }""",

    "response_count": """() => {
        const turns = document.querySelectorAll('model-response');
        if (turns.length > 0) return turns.length;
        return document.querySelectorAll('message-content.model-response-text, .model-response-text').length;
    }""",

    "generated_image": """(baseline) => {
        const turns = [...document.querySelectorAll('model-response')];
        const start = baseline == null ? turns.length - 1 : baseline;
        return turns.slice(Math.max(start, 0)).some(
            (turn) => turn.querySelector('.generated-image img, img.image, single-image img') !== null
        );
    }""",

    "fatal_phrase": """({ phrases, baseline }) => {
        const turns = [...document.querySelectorAll('model-response')];
        const start = baseline == null ? turns.length - 1 : baseline;
        for (const turn of turns.slice(Math.max(start, 0))) {
            const text = turn.innerText || '';
            const hit = phrases.find((p) => text.includes(p));
            if (hit) return hit;
        }
        return '';
    }""",

    "attachment_present": """() => {
        const selectors = [
            "img[src^='blob:']",
            '.input-area-container img',
            '.ql-editor img',
            '.file-chip',
            '.attachment-chip',
            '.attachment-thumbnail',
            'content-container img',
            '[data-filename]',
            '.attached-content',
            '.input-attachments',
        ];
        return selectors.some((sel) => {
            try { return document.querySelectorAll(sel).length > 0; }
            catch (e) { return false; }
        });
    }""",

    "ready_for_next_input": """() => {
        const input = document.querySelector('.ql-editor, div[contenteditable="true"]');
        if (!input || input.getAttribute('contenteditable') !== 'true') return false;
        const sendBtn = document.querySelector('.send-button');
        if (sendBtn && sendBtn.classList.contains('stop')) return false;
        return input.textContent.trim() === '' || input.classList.contains('ql-blank');
    }""",
}

# ── Action Scripts ───────────────────────────────────────────────────────────
#
# Actions return {ok: bool, status: str, data?: any}. A missing element is
# reported as status 'not_found', never thrown.

ACTION_SCRIPTS = {
    "hide_automation": """() => {
        Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
        return { ok: true, status: 'applied' };
    }""",

    "focus_and_clear": """() => {
        const input = document.querySelector('.ql-editor') ||
                      document.querySelector('div[contenteditable="true"]');
        if (!input) return { ok: false, status: 'not_found' };
        input.focus();
        document.execCommand('selectAll', false, null);
        document.execCommand('delete', false, null);
        return { ok: true, status: 'cleared' };
    }""",

    "inject_text": """(text) => {
        const input = document.querySelector('.ql-editor') ||
                      document.querySelector('div[contenteditable="true"]');
        if (!input) return { ok: false, status: 'not_found' };
        input.focus();
        document.execCommand('insertText', false, text);
        return { ok: true, status: 'typed', data: input.textContent.length };
    }""",

    "click_send": """() => {
        const buttons = document.querySelectorAll(
            "button.send-button:not(.stop), button[aria-label='메시지 보내기'], " +
            "button[aria-label='보내기'], button[aria-label='Send message']"
        );
        if (buttons.length === 0) return { ok: false, status: 'not_found' };
        for (const btn of buttons) {
            if (btn.getAttribute('aria-disabled') !== 'true' && !btn.disabled) {
                btn.click();
                return { ok: true, status: 'clicked' };
            }
        }
        return { ok: false, status: 'disabled' };
    }""",

    "click_stop": """() => {
        const btn = document.querySelector(
            "button[aria-label='대답 생성 중지'], button[aria-label='Stop generating'], " +
            "button.send-button.stop"
        );
        if (!btn || btn.offsetParent === null) return { ok: false, status: 'not_found' };
        btn.click();
        return { ok: true, status: 'clicked' };
    }""",

    "open_upload_menu": """() => {
        const mainSelectors = [
            "button[aria-label='파일 업로드 메뉴 열기']",
            "button[aria-label='Open file upload menu']",
            'button.upload-card-button',
            "button[aria-label*='업로드']",
            "button[aria-label*='Attach']",
        ];
        let opened = false;
        for (const sel of mainSelectors) {
            const btn = document.querySelector(sel);
            if (btn && btn.offsetParent !== null) { btn.click(); opened = true; break; }
        }
        if (!opened) return { ok: false, status: 'not_found' };
        const subSelectors = [
            "button[aria-label*='파일 업로드. 문서']",
            "button[aria-label*='Upload file']",
            "button[aria-label*='파일 업로드']",
        ];
        for (const sel of subSelectors) {
            const btn = document.querySelector(sel);
            if (btn && btn.offsetParent !== null) {
                btn.click();
                return { ok: true, status: 'submenu_clicked' };
            }
        }
        return { ok: true, status: 'menu_opened' };
    }""",

    "drop_file": """({ data, name, mime }) => {
        const bin = atob(data);
        const buf = new Uint8Array(bin.length);
        for (let i = 0; i < bin.length; i++) buf[i] = bin.charCodeAt(i);
        const file = new File([buf], name, { type: mime });
        const transfer = new DataTransfer();
        transfer.items.add(file);

        const input = document.querySelector("input[type='file'][name='Filedata']") ||
                      document.querySelector("input[type='file'][accept*='image']") ||
                      document.querySelector("input[type='file']");
        if (input) {
            input.files = transfer.files;
            input.dispatchEvent(new Event('change', { bubbles: true }));
            input.dispatchEvent(new Event('input', { bubbles: true }));
            return { ok: true, status: 'input_injected' };
        }
        const targets = ['.xap-uploader-dropzone', 'rich-textarea',
                         '.input-area-wrapper', '.chat-window', 'main'];
        let zone = null;
        for (const sel of targets) {
            zone = document.querySelector(sel);
            if (zone) break;
        }
        zone = zone || document.body;
        for (const type of ['dragenter', 'dragover', 'drop']) {
            zone.dispatchEvent(new DragEvent(type, {
                bubbles: true, cancelable: true, dataTransfer: transfer,
            }));
        }
        return { ok: true, status: 'drop_dispatched' };
    }""",

    "select_model": """async (targetModel) => {
        const interactable = (el) => {
            if (!el) return false;
            const style = window.getComputedStyle(el);
            return el.offsetParent !== null && style.display !== 'none' &&
                   style.visibility !== 'hidden' && !el.disabled;
        };
        const matches = (text) => {
            text = text.toLowerCase();
            if (targetModel === 'flash') return text.includes('flash') || text.includes('빠른');
            return text.includes(targetModel) && !text.includes('flash');
        };
        const delay = (ms) => new Promise((r) => setTimeout(r, ms));

        const picker = document.querySelector('button.input-area-switch') ||
                       document.querySelector("button[aria-haspopup='true'][aria-label*='모델']");
        if (!interactable(picker)) return { ok: false, status: 'not_found' };
        if (matches(picker.innerText || '')) return { ok: true, status: 'already_selected' };

        picker.click();
        await delay(600);
        const menuSelectors = ["button[role='menuitemradio']", 'button.mat-mdc-menu-item',
                               '.mat-mdc-menu-content button', "[role='menuitem']"];
        for (const sel of menuSelectors) {
            for (const item of document.querySelectorAll(sel)) {
                if (matches(item.innerText || '') && interactable(item)) {
                    item.click();
                    await delay(500);
                    return { ok: true, status: 'switched' };
                }
            }
        }
        document.dispatchEvent(new KeyboardEvent('keydown', { key: 'Escape', bubbles: true }));
        return { ok: false, status: 'item_not_found' };
    }""",

    "enable_image_generation": """async () => {
        const delay = (ms) => new Promise((r) => setTimeout(r, ms));
        let tools = document.querySelector('button.toolbox-drawer-button');
        if (!tools) {
            tools = [...document.querySelectorAll('button')]
                .find((b) => b.textContent.includes('도구') || b.textContent.includes('Tools'));
        }
        if (!tools) return { ok: false, status: 'not_found' };
        tools.click();
        await delay(500);
        const item = [...document.querySelectorAll('button, .mat-mdc-list-item')]
            .find((b) => b.textContent.includes('이미지 생성하기') ||
                         b.textContent.includes('Create image'));
        document.dispatchEvent(new KeyboardEvent('keydown', { key: 'Escape', bubbles: true }));
        if (!item) return { ok: false, status: 'item_not_found' };
        item.click();
        return { ok: true, status: 'enabled' };
    }""",

    "extract_image": """async () => {
        const imgs = document.querySelectorAll(
            'model-response .generated-image img, model-response img.image, model-response single-image img'
        );
        if (imgs.length === 0) return { ok: false, status: 'not_found' };
        const img = imgs[imgs.length - 1];
        try {
            const resp = await fetch(img.src);
            const blob = await resp.blob();
            const data = await new Promise((resolve, reject) => {
                const reader = new FileReader();
                reader.onloadend = () => resolve(reader.result);
                reader.onerror = reject;
                reader.readAsDataURL(blob);
            });
            return { ok: true, status: 'extracted', data };
        } catch (e) {
            return { ok: false, status: 'fetch_failed', data: String(e) };
        }
    }""",

    "delete_chat": """async () => {
        const delay = (ms) => new Promise((r) => setTimeout(r, ms));
        const menuSelectors = ['button.conversation-actions-menu-button',
                               "button[aria-label*='대화 작업']",
                               "button[aria-label='Open conversation actions menu']"];
        let menu = null;
        for (const sel of menuSelectors) {
            const btn = document.querySelector(sel);
            if (btn && btn.offsetParent !== null) { menu = btn; break; }
        }
        if (!menu) return { ok: false, status: 'not_found' };
        menu.click();
        await delay(500);
        const isDelete = (el) => el.textContent.includes('삭제') || el.textContent.includes('Delete');
        const item = [...document.querySelectorAll("[role='menuitem'], button.mat-mdc-menu-item")]
            .find(isDelete);
        if (!item) return { ok: false, status: 'item_not_found' };
        item.click();
        await delay(1000);
        const confirm = [...document.querySelectorAll(
            'mat-dialog-actions button, .mat-mdc-dialog-actions button, button.mat-mdc-button'
        )].find(isDelete);
        if (!confirm) return { ok: false, status: 'confirm_not_found' };
        confirm.click();
        return { ok: true, status: 'deleted' };
    }""",

    "recover_page": """({ rateLimit, expired }) => {
        const body = document.body ? (document.body.innerText || '') : '';
        if (expired.some((p) => body.includes(p))) return { ok: false, status: 'session_expired' };
        if (rateLimit.some((p) => body.includes(p))) return { ok: false, status: 'rate_limited' };
        const containers = ['m-snackbar', 'snack-bar', '.snackbar', "[role='alert']"];
        for (const sel of containers) {
            const el = document.querySelector(sel);
            if (el && el.offsetParent !== null) {
                const btn = el.querySelector('button');
                if (btn && btn.offsetParent !== null) {
                    btn.click();
                    return { ok: true, status: 'clicked_retry' };
                }
            }
        }
        const dialog = document.querySelector("mat-dialog-container, [role='dialog']");
        if (dialog && dialog.offsetParent !== null) {
            const close = dialog.querySelector("button[aria-label*='닫기'], button[aria-label*='Close']") ||
                          dialog.querySelector('button');
            if (close) { close.click(); return { ok: true, status: 'dismissed_dialog' }; }
        }
        const snackbar = document.querySelector('m-snackbar, snack-bar');
        if (snackbar && snackbar.offsetParent !== null) {
            snackbar.click();
            return { ok: true, status: 'dismissed_dialog' };
        }
        const input = document.querySelector('.ql-editor, div[contenteditable="true"]');
        if (!input) return { ok: false, status: 'needs_reload' };
        return { ok: false, status: 'no_action' };
    }""",
}
