from flowtrace.dom.html import HtmlDocument

__all__ = ["HtmlDocument"]
