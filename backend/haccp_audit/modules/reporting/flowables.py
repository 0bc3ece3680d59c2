"""Custom platypus flowables used by the audit report"""

from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.platypus import Flowable


class CheckBox(Flowable):
    """Square box, crossed when checked"""

    def __init__(self, checked: bool, size: float = 9):
        super().__init__()
        self.checked = checked
        self.size = size

    def wrap(self, availWidth, availHeight):
        return self.size, self.size

    def draw(self):
        canv = self.canv
        canv.saveState()
        canv.setStrokeColor(colors.black)
        canv.setLineWidth(0.8)
        canv.rect(0, 0, self.size, self.size, stroke=1, fill=0)
        if self.checked:
            inset = self.size * 0.2
            canv.setLineWidth(1.2)
            canv.line(inset, inset, self.size - inset, self.size - inset)
            canv.line(inset, self.size - inset, self.size - inset, inset)
        canv.restoreState()

    def __repr__(self):
        return f"<CheckBox checked={self.checked}>"


class ImagePlaceholder(Flowable):
    """Visible stand-in for an evidence image that could not be loaded"""

    def __init__(self, width: float, height: float, reason: str = ""):
        super().__init__()
        self.width = width
        self.height = height
        self.reason = reason

    def wrap(self, availWidth, availHeight):
        self._draw_width = min(self.width, availWidth)
        return self._draw_width, self.height

    def draw(self):
        canv = self.canv
        width = getattr(self, "_draw_width", self.width)
        canv.saveState()
        canv.setFillColor(HexColor("#f4f4f4"))
        canv.setStrokeColor(HexColor("#c62828"))
        canv.setDash(4, 3)
        canv.rect(0, 0, width, self.height, stroke=1, fill=1)
        canv.setDash()
        canv.setFillColor(HexColor("#c62828"))
        canv.setFont("Helvetica-Bold", 12)
        canv.drawCentredString(width / 2, self.height / 2 + 6, "Image unavailable")
        if self.reason:
            canv.setFillColor(HexColor("#555555"))
            canv.setFont("Helvetica", 8)
            canv.drawCentredString(width / 2, self.height / 2 - 10, self.reason[:110])
        canv.restoreState()

    def __repr__(self):
        return f"<ImagePlaceholder {self.reason!r}>"
