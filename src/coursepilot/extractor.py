from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

from .models import (
    BlankSegment,
    Choice,
    CodeBlock,
    CodeSubmission,
    DragChoice,
    DragDropIntoText,
    DropZone,
    FillInBlanks,
    Image,
    Matching,
    MatchItem,
    MatchOption,
    MultiChoice,
    Question,
    RequiredFile,
    SelectBlank,
    ShortAnswer,
    SingleChoice,
    TextBlank,
    TextSegment,
)
from .page import Delays, PageHandle

logger = logging.getLogger(__name__)

_HELPERS_JS = r"""
function extractImages(element) {
    if (!element) return [];
    const images = [];
    for (const img of element.querySelectorAll('img')) {
        if (img.src) images.push({ url: img.src, alt: img.alt || null });
    }
    return images;
}

function texFor(node, latex) {
    const display = node.getAttribute && (node.getAttribute('display') === 'true'
        || (node.type || '').includes('mode=display')
        || (node.classList && node.classList.contains('MJXc-display')));
    return document.createTextNode(display ? '\\[' + latex + '\\]' : '\\(' + latex + '\\)');
}

function extractText(element) {
    if (!element) return '';
    const clone = element.cloneNode(true);
    for (const c of clone.querySelectorAll('mjx-container')) {
        const ann = c.querySelector('annotation[encoding="application/x-tex"]');
        const scr = c.querySelector('script[type="math/tex"]');
        const latex = (ann && ann.textContent) || c.dataset.latex || (scr && scr.textContent);
        if (latex) {
            c.replaceWith(texFor(c, latex));
        } else {
            const mml = c.querySelector('.MJX_Assistive_MathML, mjx-assistive-mml');
            if (mml) c.replaceWith(document.createTextNode(mml.textContent || ''));
        }
    }
    for (const span of clone.querySelectorAll('.MathJax, .MathJax_Preview, .MathJax_Display')) {
        const next = span.nextElementSibling;
        if (next && next.tagName === 'SCRIPT' && (next.type || '').includes('math/tex')) {
            span.replaceWith(texFor(next, next.textContent));
            next.remove();
        } else {
            span.remove();
        }
    }
    for (const s of clone.querySelectorAll('script[type*="math/tex"]')) {
        s.replaceWith(texFor(s, s.textContent));
    }
    return clone.textContent.replace(/\s+/g, ' ').trim();
}

function selectOptions(select, skipEmpty) {
    const options = [];
    for (const opt of select.options) {
        if (skipEmpty && opt.value === '') continue;
        options.push({ value: opt.value, text: opt.textContent.trim() });
    }
    return options;
}
"""

EXTRACT_QUESTIONS_JS = "() => {" + _HELPERS_JS + r"""
const questions = [];
for (const formulation of document.querySelectorAll('.formulation.clearfix')) {
    const qtextEl = formulation.querySelector('.qtext');
    let questionText = extractText(qtextEl);
    if (!questionText) {
        questionText = extractText(formulation.querySelector('.filter_mathjaxloader_equation'));
    }
    const images = qtextEl ? extractImages(qtextEl) : extractImages(formulation);
    const wrapper = formulation.closest('.que');

    if (wrapper && wrapper.classList.contains('vplquestion')) {
        const ta = formulation.querySelector('textarea[data-role="code-editor"]');
        if (ta) {
            questions.push({
                type: 'CodeBlock',
                question_text: questionText || extractText(formulation.querySelector('.clearfix')),
                input_name: ta.name || '',
                language: ta.dataset.templatelang || 'text',
                current_code: ta.value || '',
                images: images,
            });
            continue;
        }
    }

    if (wrapper && wrapper.classList.contains('ddwtos')) {
        const segments = [];
        const zones = [];
        const walk = (node) => {
            if (node.nodeType === Node.TEXT_NODE) {
                if (node.textContent.trim()) segments.push({ type: 'text', text: node.textContent });
                return;
            }
            if (node.nodeType !== Node.ELEMENT_NODE) return;
            const m = node.className && String(node.className).match(/\bplace(\d+)\b/);
            if (node.classList.contains('drop') && m) {
                segments.push({ type: 'blank', index: parseInt(m[1], 10) });
                return;
            }
            if (['script', 'style', 'input'].includes(node.tagName.toLowerCase())) return;
            if (node.classList.contains('draghome') || node.classList.contains('accesshide')) return;
            for (const child of node.childNodes) walk(child);
        };
        walk(qtextEl || formulation);
        for (const input of formulation.querySelectorAll('input.placeinput')) {
            const m = input.className.match(/\bplace(\d+)\b/);
            if (!m) continue;
            zones.push({ place_number: parseInt(m[1], 10), input_name: input.name || '', current_value: input.value || '' });
        }
        const seen = new Set();
        const choices = [];
        for (const home of formulation.querySelectorAll('.draghome')) {
            const cm = String(home.className).match(/\bchoice(\d+)\b/);
            const gm = String(home.className).match(/\bgroup(\d+)\b/);
            if (!cm) continue;
            const key = (gm ? gm[1] : '1') + ':' + cm[1];
            if (seen.has(key)) continue;
            seen.add(key);
            choices.push({ choice_number: parseInt(cm[1], 10), text: home.textContent.trim(), group: gm ? parseInt(gm[1], 10) : 1 });
        }
        if (zones.length > 0) {
            questions.push({ type: 'DragDropIntoText', question_text: questionText, segments: segments, drop_zones: zones, choices: choices, images: images });
            continue;
        }
    }

    const ablock = formulation.querySelector('.ablock');
    const inline = formulation.querySelectorAll(
        '.qtext input[type="text"], .ablock input[type="text"], .qtext select, .ablock select, ' +
        '.subquestion input[type="text"], .subquestion select');
    const hasInlineSelect = formulation.querySelector('.qtext select, .ablock select, .subquestion select') !== null;
    const hasInlineText = formulation.querySelector('.qtext input[type="text"], .ablock input[type="text"], .subquestion input[type="text"]') !== null;
    const hasSub = formulation.querySelectorAll('.subquestion input[type="text"], .subquestion select').length > 0;

    if (inline.length > 1 || (hasInlineSelect && hasInlineText) || hasSub) {
        const segments = [];
        const blanks = [];
        const walk = (node) => {
            if (node.nodeType === Node.TEXT_NODE) {
                if (node.textContent.trim()) segments.push({ type: 'text', text: node.textContent });
                return;
            }
            if (node.nodeType !== Node.ELEMENT_NODE) return;
            const tag = node.tagName.toLowerCase();
            if (tag === 'input' && node.type === 'hidden') return;
            if ((tag === 'label' || tag === 'h4') && node.classList.contains('accesshide')) return;
            if (tag === 'input' && node.type === 'text') {
                segments.push({ type: 'blank', index: blanks.length });
                blanks.push({ type: 'text', input_name: node.name || '', current_value: node.value || '' });
            } else if (tag === 'select') {
                segments.push({ type: 'blank', index: blanks.length });
                blanks.push({ type: 'select', select_name: node.name || '', options: selectOptions(node, true), selected_value: node.value || '' });
            } else if (tag === 'br') {
                segments.push({ type: 'text', text: '\n' });
            } else if (tag === 'p') {
                segments.push({ type: 'text', text: '\n' });
                for (const child of node.childNodes) walk(child);
                segments.push({ type: 'text', text: '\n' });
            } else if (!['script', 'style', 'mjx-container', 'img'].includes(tag)) {
                for (const child of node.childNodes) walk(child);
            }
        };
        walk(formulation);
        if (blanks.length > 0) {
            questions.push({ type: 'FillInBlanks', question_text: questionText, segments: segments, blanks: blanks, images: images });
            continue;
        }
    }

    const textInput = ablock && ablock.querySelector('input[type="text"]');
    if (textInput && textInput.name && inline.length <= 1) {
        questions.push({ type: 'ShortAnswer', question_text: questionText, input_name: textInput.name, current_answer: textInput.value || '', images: images });
        continue;
    }

    const table = formulation.querySelector('.ablock table.answer');
    if (table && table.querySelectorAll('select').length > 0) {
        const items = [];
        for (const select of table.querySelectorAll('select')) {
            const row = select.closest('tr');
            items.push({
                prompt: extractText(row && row.querySelector('.text')),
                select_name: select.name || '',
                options: selectOptions(select, false),
                selected_value: select.value || '0',
            });
        }
        questions.push({ type: 'Matching', question_text: questionText, items: items, images: images });
        continue;
    }

    const inlineSelects = formulation.querySelectorAll('.subquestion select, .qtext select');
    if (inlineSelects.length > 0) {
        const items = [];
        for (const select of inlineSelects) {
            items.push({ prompt: '', select_name: select.name || '', options: selectOptions(select, true), selected_value: select.value || '' });
        }
        questions.push({ type: 'Matching', question_text: questionText, items: items, images: images });
        continue;
    }

    const answerDiv = formulation.querySelector('.answer');
    if (!answerDiv) continue;
    const radios = answerDiv.querySelectorAll('input[type="radio"]');
    const boxes = answerDiv.querySelectorAll('input[type="checkbox"]');
    const inputs = radios.length > 0 ? radios : boxes;
    const choices = [];
    for (const input of inputs) {
        const label = input.closest('div') && input.closest('div').querySelector('label, .ml-1, .flex-fill');
        choices.push({
            input_name: input.name || '',
            input_value: input.value || '',
            text: extractText(label),
            selected: input.checked,
            images: extractImages(label),
        });
    }
    if (choices.length > 0) {
        questions.push({ type: radios.length > 0 ? 'SingleChoice' : 'MultiChoice', question_text: questionText, choices: choices, images: images });
    }
}
return questions;
}"""

EXTRACT_CODE_SUBMISSION_JS = "() => {" + _HELPERS_JS + r"""
const moduleId = new URLSearchParams(window.location.search).get('id') || '';
const walk = (node) => {
    if (node.nodeType === Node.TEXT_NODE) return node.textContent;
    if (node.nodeType !== Node.ELEMENT_NODE) return '';
    const tag = node.tagName.toLowerCase();
    const inner = () => Array.from(node.childNodes).map(walk).join('');
    if (tag === 'p') return '\n\n' + inner();
    if (tag === 'br') return '\n';
    if (tag === 'li') return '\n• ' + inner();
    if (tag === 'code') return '`' + node.textContent + '`';
    if (tag === 'span') {
        const style = node.getAttribute('style') || '';
        if (style.includes('courier') || style.includes('monospace')) return '`' + node.textContent + '`';
        return inner();
    }
    if (tag === 'em' || tag === 'i') return '_' + inner() + '_';
    if (tag === 'strong' || tag === 'b') return '**' + inner() + '**';
    if (tag === 'div' && node.classList.contains('editor-indent')) return '\n' + inner();
    return inner();
};
const describe = (el, minLength) => {
    if (el.textContent.includes('Work state summary')) return null;
    const text = el.textContent.trim();
    if (text.length < minLength || text.includes('Responsable de la matière')) return null;
    const clone = el.cloneNode(true);
    for (const junk of clone.querySelectorAll('script, style, .ace_editor, pre[id^="codefile"]')) junk.remove();
    const desc = Array.from(clone.childNodes).map(walk).join('').trim().replace(/\n{3,}/g, '\n\n');
    return desc.length > 50 ? desc : null;
};
let description = '';
let images = [];
const candidates = [
    ...Array.from(document.querySelectorAll('.generalbox .no-overflow')).map(el => [el, 50]),
    ...Array.from(document.querySelectorAll('.no-overflow')).map(el => [el, 100]),
];
for (const [el, minLength] of candidates) {
    const desc = describe(el, minLength);
    if (desc) { description = desc; images = extractImages(el); break; }
}
const aceText = (pre) => Array.from(pre.querySelectorAll('.ace_line')).map(l => l.textContent).join('\n');
const files = [];
for (const h4 of document.querySelectorAll('h4[id^="fileid"]')) {
    const name = h4.textContent.trim();
    if (!name) continue;
    const pre = document.getElementById('code' + h4.id);
    files.push({ name: name, content: pre ? aceText(pre).trim() : '' });
}
if (files.length === 0) {
    for (const pre of document.querySelectorAll('pre.ace_editor')) {
        const content = aceText(pre);
        if (content.includes('# Ecrivez') || content.includes('if __name__')) {
            files.push({ name: 'student.py', content: content.trim() });
            break;
        }
    }
}
if (!description && files.length === 0) return null;
return { type: 'CodeSubmission', description: description, required_files: files, module_id: moduleId, images: images };
}"""

_CONFIRMATION_TEXT_JS = r"""
const isConfirmation = (text) => {
    const t = (text || '').toLowerCase();
    return ['envoyer', 'terminer', 'submit', 'finir', 'confirm', 'valider'].some(k => t.includes(k));
};
"""

CONFIRMATION_AFFORDANCES_JS = "(shouldClick) => {" + _CONFIRMATION_TEXT_JS + r"""
const names = [];
const hit = (el, name) => { names.push(name); if (shouldClick) el.click(); };
for (const btn of document.querySelectorAll('button[data-action="toggle-manual-completion"], button[data-toggletype="manual:mark-done"]')) {
    hit(btn, btn.getAttribute('data-activityname') || btn.textContent.trim());
}
for (const btn of document.querySelectorAll('button[type="submit"].btn-primary')) {
    if (isConfirmation(btn.textContent)) hit(btn, btn.textContent.trim());
}
for (const btn of document.querySelectorAll('.mod_quiz-next-nav, button[name="next"], input[name="next"][type="submit"]')) {
    const text = (btn.textContent || '').trim() || btn.value || '';
    if (isConfirmation(text)) hit(btn, text || 'Finish attempt');
}
for (const link of document.querySelectorAll('a.endtestlink, a[href*="summary"]')) {
    if (isConfirmation(link.textContent)) hit(link, link.textContent.trim());
}
return names;
}"""

MODAL_CONFIRMATION_JS = "() => {" + _CONFIRMATION_TEXT_JS + r"""
const buttons = document.querySelectorAll(
    '.modal button.btn-primary, .modal-dialog button.btn-primary, [role="dialog"] button.btn-primary, ' +
    '.moodle-dialogue button.btn-primary, .yui3-panel button.btn-primary, [data-region="modal"] button.btn-primary');
for (const btn of buttons) {
    if (isConfirmation(btn.textContent)) { btn.click(); return true; }
}
return false;
}"""

FETCH_IMAGE_JS = r"""async (url) => {
    try {
        const response = await fetch(url);
        if (!response.ok) return null;
        const blob = await response.blob();
        const dataUrl = await new Promise((resolve) => {
            const reader = new FileReader();
            reader.onloadend = () => resolve(reader.result);
            reader.readAsDataURL(blob);
        });
        return { base64: String(dataUrl).split(',')[1], media_type: blob.type || 'image/png' };
    } catch (e) {
        return null;
    }
}"""


def _images(raw: Any) -> tuple[Image, ...]:
    return tuple(
        Image(url=str(img.get("url") or ""), alt=img.get("alt"))
        for img in (raw or [])
        if isinstance(img, dict) and img.get("url")
    )


def _options(raw: Any) -> tuple[MatchOption, ...]:
    return tuple(
        MatchOption(value=str(opt.get("value") or ""), text=str(opt.get("text") or ""))
        for opt in (raw or [])
        if isinstance(opt, dict)
    )


def _segments(raw: Any) -> tuple:
    out = []
    for seg in raw or []:
        if not isinstance(seg, dict):
            continue
        if seg.get("type") == "text":
            out.append(TextSegment(str(seg.get("text") or "")))
        elif seg.get("type") == "blank":
            out.append(BlankSegment(int(seg.get("index") or 0)))
    return tuple(out)


def _blanks(raw: Any) -> tuple:
    out = []
    for blank in raw or []:
        if not isinstance(blank, dict):
            continue
        if blank.get("type") == "text":
            out.append(TextBlank(str(blank.get("input_name") or ""), str(blank.get("current_value") or "")))
        elif blank.get("type") == "select":
            out.append(
                SelectBlank(
                    select_name=str(blank.get("select_name") or ""),
                    options=_options(blank.get("options")),
                    selected_value=str(blank.get("selected_value") or ""),
                )
            )
    return tuple(out)


def decode_question(item: dict[str, Any]) -> Question | None:
    """Turn one extractor record into a ``Question``; ``None`` for unusable records."""
    kind = item.get("type")
    text = str(item.get("question_text") or "")
    images = _images(item.get("images"))
    if kind in ("SingleChoice", "MultiChoice"):
        choices = tuple(
            Choice(
                input_name=str(c.get("input_name") or ""),
                input_value=str(c.get("input_value") or ""),
                text=str(c.get("text") or ""),
                selected=bool(c.get("selected")),
                images=_images(c.get("images")),
            )
            for c in item.get("choices") or []
            if isinstance(c, dict)
        )
        if not choices:
            return None
        cls = MultiChoice if kind == "MultiChoice" else SingleChoice
        return cls(question_text=text, choices=choices, images=images)
    if kind == "ShortAnswer":
        return ShortAnswer(
            question_text=text,
            input_name=str(item.get("input_name") or ""),
            current_answer=str(item.get("current_answer") or ""),
            images=images,
        )
    if kind == "Matching":
        items = tuple(
            MatchItem(
                prompt=str(it.get("prompt") or ""),
                select_name=str(it.get("select_name") or ""),
                options=_options(it.get("options")),
                selected_value=str(it.get("selected_value") or ""),
            )
            for it in item.get("items") or []
            if isinstance(it, dict)
        )
        return Matching(question_text=text, items=items, images=images) if items else None
    if kind == "FillInBlanks":
        blanks = _blanks(item.get("blanks"))
        if not blanks:
            return None
        return FillInBlanks(question_text=text, segments=_segments(item.get("segments")), blanks=blanks, images=images)
    if kind == "DragDropIntoText":
        # blank segments carry the drop zone's place number, not a list index
        zones = tuple(
            DropZone(
                place_number=int(z.get("place_number") or 0),
                input_name=str(z.get("input_name") or ""),
                current_value=str(z.get("current_value") or ""),
            )
            for z in item.get("drop_zones") or []
            if isinstance(z, dict)
        )
        choices = tuple(
            DragChoice(
                choice_number=int(c.get("choice_number") or 0),
                text=str(c.get("text") or ""),
                group=int(c.get("group") or 1),
            )
            for c in item.get("choices") or []
            if isinstance(c, dict)
        )
        if not zones:
            return None
        return DragDropIntoText(
            question_text=text,
            segments=_segments(item.get("segments")),
            drop_zones=zones,
            choices=choices,
            images=images,
        )
    if kind == "CodeBlock":
        return CodeBlock(
            question_text=text,
            input_name=str(item.get("input_name") or ""),
            language=str(item.get("language") or "text"),
            current_code=str(item.get("current_code") or ""),
            images=images,
        )
    if kind == "CodeSubmission":
        return decode_code_submission(item)
    logger.warning("extractor: unknown question type %r", kind)
    return None


def decode_questions(payload: Any) -> list[Question]:
    if not isinstance(payload, list):
        return []
    out: list[Question] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        question = decode_question(item)
        if question is not None:
            out.append(question)
    return out


def decode_code_submission(payload: Any) -> CodeSubmission | None:
    if not isinstance(payload, dict):
        return None
    files = tuple(
        RequiredFile(name=str(f.get("name") or ""), content=str(f.get("content") or ""))
        for f in payload.get("required_files") or []
        if isinstance(f, dict) and f.get("name")
    )
    return CodeSubmission(
        description=str(payload.get("description") or ""),
        required_files=files,
        module_id=str(payload.get("module_id") or ""),
        images=_images(payload.get("images")),
    )


class PageExtractor:
    def __init__(self, delays: Delays = Delays()) -> None:
        self._delays = delays

    async def extract_questions(self, page: PageHandle) -> list[Question]:
        payload = await page.evaluate(EXTRACT_QUESTIONS_JS)
        questions = decode_questions(payload)
        logger.info("extractor: %s question(s) on %s", len(questions), await page.current_url())
        return questions

    async def extract_code_submission(self, page: PageHandle) -> CodeSubmission | None:
        return decode_code_submission(await page.evaluate(EXTRACT_CODE_SUBMISSION_JS))

    async def find_confirmation_affordances(self, page: PageHandle) -> list[str]:
        names = await page.evaluate(CONFIRMATION_AFFORDANCES_JS, False)
        return [str(n) for n in names or []]

    async def click_confirmations(self, page: PageHandle) -> bool:
        """Click every confirmation control, then a modal confirm if one appears.

        Returns True when a modal confirmation was clicked, which ends the quiz.
        """
        clicked = await page.evaluate(CONFIRMATION_AFFORDANCES_JS, True)
        logger.info("extractor: clicked %s confirmation control(s)", len(clicked or []))
        await asyncio.sleep(self._delays.settle / 2)
        modal = bool(await page.evaluate(MODAL_CONFIRMATION_JS))
        if modal:
            logger.info("extractor: clicked modal confirmation")
        return modal

    async def fetch_image(self, page: PageHandle, url: str) -> tuple[bytes, str] | None:
        data = await page.evaluate(FETCH_IMAGE_JS, url)
        if not isinstance(data, dict) or not data.get("base64"):
            return None
        return base64.b64decode(data["base64"]), str(data.get("media_type") or "image/png")
